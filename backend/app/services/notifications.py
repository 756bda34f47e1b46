from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from app.models.notification import Notification


logger = logging.getLogger(__name__)


class LoggingNotificationSink:
    def notify(self, account_id: str, kind: str, title: str, message: str, related_id: str | None = None) -> None:
        logger.info(
            "notifications.log account_id=%s kind=%s title=%s related_id=%s", account_id, kind, title, related_id
        )


class DatabaseNotificationSink:
    """Writes notification rows in a session of its own.

    Runs after the business transaction has committed, so a failure here is
    logged and dropped rather than undoing the ledger change.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def notify(self, account_id: str, kind: str, title: str, message: str, related_id: str | None = None) -> None:
        db = self._session_factory()
        try:
            db.add(
                Notification(
                    account_id=account_id,
                    kind=kind,
                    title=title,
                    message=message,
                    related_id=related_id,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("notifications.db.failed account_id=%s kind=%s", account_id, kind)
        finally:
            db.close()
