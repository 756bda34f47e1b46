from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base for every error the credit engine reports to callers.

    `code` is stable and safe to expose; `status_code` is the HTTP mapping used
    by the API layer.
    """

    code = "engine_error"
    status_code = 400

    def __init__(self, message: str | None = None, **context: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class ValidationError(EngineError):
    code = "validation_error"
    status_code = 422


class UnknownPlan(ValidationError):
    code = "unknown_plan"


class NotFound(EngineError):
    code = "not_found"
    status_code = 404


class AccountNotFound(NotFound):
    code = "account_not_found"


class AppointmentNotFound(NotFound):
    code = "appointment_not_found"


class SlotNotFound(NotFound):
    code = "slot_not_found"


class PermissionDenied(EngineError):
    code = "forbidden"
    status_code = 403


class PreconditionFailed(EngineError):
    code = "precondition_failed"
    status_code = 400


class InsufficientCredits(PreconditionFailed):
    code = "insufficient_credits"


class NoFundingSource(PreconditionFailed):
    code = "no_funding_source"


class LeadTimeViolation(PreconditionFailed):
    code = "lead_time_violation"


class UpgradeRejected(PreconditionFailed):
    code = "upgrade_rejected"


class SlotUnavailable(PreconditionFailed):
    code = "slot_unavailable"
    status_code = 409


class InvalidTransition(PreconditionFailed):
    code = "invalid_transition"
    status_code = 409


class Conflict(EngineError):
    code = "conflict"
    status_code = 409


class IntegrityViolation(EngineError):
    code = "integrity_violation"
    status_code = 500


class TooEarlyToStart(PreconditionFailed):
    code = "too_early_to_start"
