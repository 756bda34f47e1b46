from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import Conflict, ValidationError
from app.core.settings import settings
from app.core.unit_of_work import NotificationSink, run_transaction
from app.models.credit_package import CreditPackage
from app.models.payment import PaymentConfirmation
from app.services import ledger
from app.services.packages import PackageManager


logger = logging.getLogger(__name__)

KIND_PURCHASE = "purchase"
KIND_UPGRADE = "upgrade"
KIND_SUBSCRIPTION = "subscription"


@dataclass(frozen=True)
class PaymentResult:
    reference_id: str
    kind: str
    package_id: int | None
    duplicate: bool


def _find_duplicate(
    db: Session,
    account_id: str,
    plan_id: str,
    amount_paid: int,
    reference_id: str,
    now: datetime,
    window_seconds: int,
) -> PaymentConfirmation | None:
    seen = db.query(PaymentConfirmation).filter(PaymentConfirmation.reference_id == reference_id).first()
    if seen is not None:
        return seen
    if window_seconds <= 0:
        return None
    return (
        db.query(PaymentConfirmation)
        .filter(PaymentConfirmation.account_id == account_id)
        .filter(PaymentConfirmation.plan_id == plan_id)
        .filter(PaymentConfirmation.amount_paid == amount_paid)
        .filter(PaymentConfirmation.created_at >= now - timedelta(seconds=window_seconds))
        .order_by(PaymentConfirmation.id.desc())
        .first()
    )


def _as_result(row: PaymentConfirmation, duplicate: bool) -> PaymentResult:
    return PaymentResult(reference_id=row.reference_id, kind=row.kind, package_id=row.package_id, duplicate=duplicate)


def on_payment_confirmed(
    db: Session,
    manager: PackageManager,
    account_id: str,
    plan_id: str,
    amount_paid: int,
    reference_id: str,
    *,
    subscription: bool = False,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
    window_seconds: int | None = None,
) -> PaymentResult:
    """Apply a confirmed payment exactly once.

    A retried delivery carries the same `reference_id`; a double submit that
    reached the gateway twice carries a new reference but the same account,
    plan and amount within the dedupe window. Both are answered with the
    original outcome and grant nothing.

    The payment becomes an upgrade when the account holds an untouched lower
    tier package and the amount covers the upgrade difference; otherwise it
    must cover the full plan price.
    """
    reference_id = str(reference_id or "").strip()
    if not reference_id:
        raise ValidationError("reference_id is required")
    amount_paid = int(amount_paid)
    if amount_paid < 0:
        raise ValidationError("amount_paid must not be negative")
    plan = manager.catalog.get(plan_id)
    now = now or utcnow()
    window = settings.payment_dedupe_window_seconds if window_seconds is None else int(window_seconds)

    def work() -> PaymentResult:
        # Serializes concurrent deliveries for the same account.
        ledger.get_account(db, account_id, lock=True)
        seen = _find_duplicate(db, account_id, plan.plan_id, amount_paid, reference_id, now, window)
        if seen is not None:
            logger.info(
                "payments.duplicate account_id=%s reference_id=%s original_reference_id=%s",
                account_id,
                reference_id,
                seen.reference_id,
            )
            return _as_result(seen, duplicate=True)

        package: CreditPackage | None
        if subscription:
            kind = KIND_SUBSCRIPTION
            if amount_paid < plan.price_ksh:
                raise ValidationError(f"Payment of {amount_paid} does not cover the {plan.plan_id} plan")
            package = manager.allocate_monthly(db, account_id, plan.plan_id, now=now)
        else:
            quote = manager.quote_upgrade(db, account_id, plan.plan_id, now=now)
            if quote.eligible and quote.amount_due <= amount_paid < plan.price_ksh:
                kind = KIND_UPGRADE
                package = manager.upgrade(db, account_id, quote.current_package_id, plan.plan_id, now=now)
            elif amount_paid >= plan.price_ksh:
                kind = KIND_PURCHASE
                package = manager.purchase(db, account_id, plan.plan_id, now=now)
            else:
                raise ValidationError(f"Payment of {amount_paid} does not cover the {plan.plan_id} plan")

        row = PaymentConfirmation(
            reference_id=reference_id,
            account_id=account_id,
            plan_id=plan.plan_id,
            amount_paid=amount_paid,
            kind=kind,
            package_id=(package.id if package is not None else None),
            created_at=now,
        )
        db.add(row)
        try:
            db.flush()
        except IntegrityError as exc:
            raise Conflict("Payment confirmation is already being processed", reference_id=reference_id) from exc
        logger.info(
            "payments.confirmed account_id=%s reference_id=%s plan=%s kind=%s package_id=%s",
            account_id,
            reference_id,
            plan.plan_id,
            kind,
            row.package_id,
        )
        return _as_result(row, duplicate=False)

    return run_transaction(db, work, notifier=notifier)
