from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Protocol, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.core.errors import Conflict


logger = logging.getLogger(__name__)

PENDING_EVENTS_KEY = "pending_events"

T = TypeVar("T")


@dataclass(frozen=True)
class DomainEvent:
    account_id: str
    kind: str
    title: str
    message: str
    related_id: str | None = None


class NotificationSink(Protocol):
    def notify(self, account_id: str, kind: str, title: str, message: str, related_id: str | None = None) -> None:
        ...


def emit_event(db: Session, event: DomainEvent) -> None:
    """Queue an event on the session; it is delivered only if the transaction commits."""
    db.info.setdefault(PENDING_EVENTS_KEY, []).append(event)


def _take_events(db: Session) -> list[DomainEvent]:
    return list(db.info.pop(PENDING_EVENTS_KEY, None) or [])


def dispatch_events(events: list[DomainEvent], notifier: NotificationSink) -> None:
    for event in events:
        try:
            notifier.notify(event.account_id, event.kind, event.title, event.message, event.related_id)
        except Exception:
            logger.exception(
                "uow.dispatch.failed account_id=%s kind=%s related_id=%s",
                event.account_id,
                event.kind,
                event.related_id,
            )


@contextmanager
def unit_of_work(db: Session, notifier: NotificationSink | None = None) -> Iterator[Session]:
    """Commit everything done on `db` inside the block, or nothing at all."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        dropped = _take_events(db)
        if dropped:
            logger.info("uow.rollback.dropped_events count=%s", len(dropped))
        raise

    events = _take_events(db)
    if notifier is not None and events:
        dispatch_events(events, notifier)


def run_transaction(
    db: Session,
    work: Callable[[], T],
    *,
    notifier: NotificationSink | None = None,
    retries: int = 1,
) -> T:
    """Run `work` in one unit of work, retrying transient lock failures.

    Lock timeouts, deadlocks and statement timeouts surface as
    `OperationalError`; the transaction has already been rolled back when the
    retry starts. After `retries` extra attempts the failure becomes `Conflict`.
    """
    attempt = 0
    while True:
        try:
            with unit_of_work(db, notifier=notifier):
                return work()
        except OperationalError as exc:
            if attempt >= retries:
                logger.warning("uow.conflict attempts=%s error=%s", attempt + 1, exc.__class__.__name__)
                raise Conflict("The request conflicted with a concurrent update, please retry") from exc
            attempt += 1
            logger.info("uow.retry attempt=%s", attempt)
