from __future__ import annotations

from dataclasses import dataclass

from app.core.errors import PermissionDenied
from app.models.account import Role
from app.models.appointment import Appointment


ALL_ACTIONS = frozenset({"book", "reschedule", "cancel", "confirm", "start", "complete", "no_show"})

# Every Role must appear here; checked at import.
ROLE_ACTIONS: dict[Role, frozenset[str]] = {
    Role.PATIENT: frozenset({"book", "reschedule", "cancel"}),
    Role.DOCTOR: frozenset({"reschedule", "cancel", "confirm", "start", "complete", "no_show"}),
    Role.ADMIN: ALL_ACTIONS,
    Role.UNASSIGNED: frozenset(),
}

if set(ROLE_ACTIONS) != set(Role):
    raise RuntimeError("ROLE_ACTIONS must cover every Role")


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role


def ensure_allowed(actor: Actor, action: str) -> None:
    if action not in ROLE_ACTIONS[actor.role]:
        raise PermissionDenied(f"{actor.role.value.lower()} accounts cannot {action.replace('_', ' ')}")


def ensure_participant(actor: Actor, appointment: Appointment, action: str) -> None:
    ensure_allowed(actor, action)
    if actor.role == Role.ADMIN:
        return
    if actor.role == Role.PATIENT and appointment.patient_id == actor.id:
        return
    if actor.role == Role.DOCTOR and appointment.doctor_id == actor.id:
        return
    raise PermissionDenied("Not a participant of this appointment")
