from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.errors import UpgradeRejected
from app.core.unit_of_work import DomainEvent, emit_event
from app.models.credit_ledger import LedgerKind
from app.models.credit_package import CreditPackage, PackageStatus
from app.services import ledger
from app.services.plans import CREDITS_PER_CONSULTATION, Plan, PlanCatalog


logger = logging.getLogger(__name__)

SOURCE_PURCHASE = "purchase"
SOURCE_UPGRADE = "upgrade"
SOURCE_SUBSCRIPTION = "subscription"

NOTIFICATION_KIND_EXPIRY = "CREDIT_EXPIRY"
EXPIRY_WARNING_DAYS = (3, 7)
EXPIRY_WARNING_REPEAT = timedelta(hours=24)


@dataclass(frozen=True)
class UpgradeQuote:
    eligible: bool
    reason: str | None
    target_plan: str
    current_package_id: int | None
    amount_due: int
    credits_granted: int
    rollover_credits: int


class PackageManager:
    """Package lifecycle against one immutable plan catalog.

    Methods participate in the caller's unit of work and never commit.
    """

    def __init__(self, catalog: PlanCatalog) -> None:
        self.catalog = catalog

    def get_active(self, db: Session, account_id: str, now: datetime | None = None) -> CreditPackage | None:
        return ledger.find_active_package(db, account_id, now=now)

    def tier_of(self, package: CreditPackage) -> int:
        return self.catalog.tier_of(package.package_type)

    def quote_upgrade(
        self,
        db: Session,
        account_id: str,
        plan_id: str,
        now: datetime | None = None,
    ) -> UpgradeQuote:
        plan = self.catalog.get(plan_id)
        current = self.get_active(db, account_id, now=now)
        reason = self._upgrade_block_reason(current, plan)
        if reason is not None:
            return UpgradeQuote(
                eligible=False,
                reason=reason,
                target_plan=plan.plan_id,
                current_package_id=(current.id if current is not None else None),
                amount_due=plan.price_ksh,
                credits_granted=plan.credits,
                rollover_credits=0,
            )
        return UpgradeQuote(
            eligible=True,
            reason=None,
            target_plan=plan.plan_id,
            current_package_id=current.id,
            amount_due=max(0, plan.price_ksh - int(current.price_ksh or 0)),
            credits_granted=plan.credits,
            rollover_credits=int(current.credits_remaining or 0),
        )

    def _upgrade_block_reason(self, current: CreditPackage | None, plan: Plan) -> str | None:
        if current is None:
            return "no_active_package"
        if current.status != PackageStatus.ACTIVE:
            return "package_not_active"
        if int(current.credits_used or 0) > 0:
            return "credits_already_used"
        if plan.tier <= self.tier_of(current):
            return "not_a_higher_tier"
        return None

    def _create_package(
        self,
        db: Session,
        account_id: str,
        plan: Plan,
        *,
        total_credits: int,
        now: datetime,
        validity_days: int,
        source: str,
        replaced_package_id: int | None = None,
    ) -> CreditPackage:
        package = CreditPackage(
            account_id=account_id,
            package_type=plan.package_type,
            plan_version=self.catalog.version,
            consultations=total_credits // CREDITS_PER_CONSULTATION,
            total_credits=total_credits,
            credits_used=0,
            credits_remaining=total_credits,
            price_ksh=plan.price_ksh,
            price_per_consultation=plan.price_per_consultation,
            purchased_at=now,
            valid_until=now + timedelta(days=validity_days),
            status=PackageStatus.ACTIVE,
            is_shareable=plan.is_shareable,
            source=source,
            replaced_package_id=replaced_package_id,
        )
        db.add(package)
        db.flush()
        return package

    def _supersede_active(self, db: Session, account_id: str, now: datetime) -> tuple[int, int | None]:
        """Expire every ACTIVE package; return credits still usable and the newest id."""
        rollover = 0
        newest_id = None
        active = (
            db.query(CreditPackage)
            .filter(CreditPackage.account_id == account_id, CreditPackage.status == PackageStatus.ACTIVE)
            .order_by(CreditPackage.purchased_at.asc(), CreditPackage.id.asc())
            .with_for_update()
            .all()
        )
        for package in active:
            if as_utc(package.valid_until) > now:
                rollover += int(package.credits_remaining or 0)
                newest_id = package.id
            package.status = PackageStatus.EXPIRED
        return rollover, newest_id

    def purchase(
        self,
        db: Session,
        account_id: str,
        plan_id: str,
        *,
        now: datetime | None = None,
        validity_days: int | None = None,
        source: str = SOURCE_PURCHASE,
        description: str | None = None,
    ) -> CreditPackage:
        plan = self.catalog.get(plan_id)
        now = now or utcnow()
        ledger.get_account(db, account_id, lock=True)

        rollover, replaced_id = self._supersede_active(db, account_id, now)
        package = self._create_package(
            db,
            account_id,
            plan,
            total_credits=plan.credits + rollover,
            now=now,
            validity_days=(validity_days or self.catalog.purchase_validity_days),
            source=source,
            replaced_package_id=replaced_id,
        )
        ledger.credit(
            db,
            account_id,
            plan.credits,
            kind=LedgerKind.PURCHASE,
            description=description
            or f"Purchased {plan.plan_id.capitalize()} package ({plan.consultations} consultations)",
            package_id=package.id,
            now=now,
        )
        emit_event(
            db,
            DomainEvent(
                account_id=account_id,
                kind="SYSTEM",
                title="Package activated",
                message=(
                    f"Your {plan.plan_id.capitalize()} package has been activated. "
                    f"{plan.consultations} consultations added to your account."
                ),
                related_id=str(package.id),
            ),
        )
        logger.info(
            "packages.purchase account_id=%s plan=%s package_id=%s rollover=%s source=%s",
            account_id,
            plan.plan_id,
            package.id,
            rollover,
            source,
        )
        return package

    def upgrade(
        self,
        db: Session,
        account_id: str,
        current_package_id: int,
        plan_id: str,
        *,
        now: datetime | None = None,
    ) -> CreditPackage:
        """Swap an untouched package for a higher tier, rolling its credits over.

        Only the new plan's credits reach the ledger; the rolled-over credits
        were never spent and are already in the balance.
        """
        plan = self.catalog.get(plan_id)
        now = now or utcnow()
        ledger.get_account(db, account_id, lock=True)

        current = (
            db.query(CreditPackage)
            .filter(CreditPackage.id == current_package_id, CreditPackage.account_id == account_id)
            .with_for_update()
            .first()
        )
        reason = self._upgrade_block_reason(current, plan)
        if reason is None and as_utc(current.valid_until) <= now:
            reason = "package_expired"
        if reason is not None:
            logger.warning(
                "packages.upgrade.rejected account_id=%s package_id=%s plan=%s reason=%s",
                account_id,
                current_package_id,
                plan.plan_id,
                reason,
            )
            raise UpgradeRejected(f"Upgrade to {plan.plan_id} is not allowed: {reason}", reason=reason)

        rollover = int(current.credits_remaining or 0)
        current.status = PackageStatus.EXPIRED
        package = self._create_package(
            db,
            account_id,
            plan,
            total_credits=plan.credits + rollover,
            now=now,
            validity_days=self.catalog.purchase_validity_days,
            source=SOURCE_UPGRADE,
            replaced_package_id=current.id,
        )
        ledger.credit(
            db,
            account_id,
            plan.credits,
            kind=LedgerKind.PURCHASE,
            description=f"Upgraded to {plan.plan_id.capitalize()} package ({plan.consultations} consultations)",
            package_id=package.id,
            now=now,
        )
        emit_event(
            db,
            DomainEvent(
                account_id=account_id,
                kind="SYSTEM",
                title="Package upgraded",
                message=(
                    f"Your package was upgraded to {plan.plan_id.capitalize()}. "
                    f"{rollover // 2} unused consultations were carried over."
                ),
                related_id=str(package.id),
            ),
        )
        logger.info(
            "packages.upgrade account_id=%s old_package_id=%s new_package_id=%s rollover=%s",
            account_id,
            current.id,
            package.id,
            rollover,
        )
        return package

    def allocate_monthly(
        self,
        db: Session,
        account_id: str,
        plan_id: str,
        now: datetime | None = None,
    ) -> CreditPackage | None:
        """Grant a subscriber's monthly package once per calendar month."""
        now = now or utcnow()
        plan = self.catalog.get(plan_id)
        ledger.get_account(db, account_id, lock=True)

        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        already = (
            db.query(CreditPackage.id)
            .filter(CreditPackage.account_id == account_id)
            .filter(CreditPackage.source == SOURCE_SUBSCRIPTION)
            .filter(CreditPackage.purchased_at >= month_start)
            .first()
        )
        if already is not None:
            logger.info("packages.allocate_monthly.skip account_id=%s month=%s", account_id, now.strftime("%Y-%m"))
            return None

        return self.purchase(
            db,
            account_id,
            plan.plan_id,
            now=now,
            validity_days=self.catalog.subscription_validity_days,
            source=SOURCE_SUBSCRIPTION,
            description=f"Monthly {plan.plan_id} package allocation",
        )

    def expire_stale(self, db: Session, now: datetime | None = None) -> int:
        now = now or utcnow()
        stale = (
            db.query(CreditPackage)
            .filter(CreditPackage.status == PackageStatus.ACTIVE)
            .filter(CreditPackage.valid_until <= now)
            .with_for_update()
            .all()
        )
        for package in stale:
            package.status = PackageStatus.EXPIRED
            unused = int(package.credits_remaining or 0) // CREDITS_PER_CONSULTATION
            emit_event(
                db,
                DomainEvent(
                    account_id=package.account_id,
                    kind=NOTIFICATION_KIND_EXPIRY,
                    title="Package Expired",
                    message=(
                        f"Your {package.package_type.value} package has expired with {unused} unused "
                        f"consultation{'' if unused == 1 else 's'}. Purchase a new package to continue."
                    ),
                    related_id=str(package.id),
                ),
            )
        if stale:
            logger.info("packages.expire_stale count=%s", len(stale))
        return len(stale)

    def warn_expiring(self, db: Session, now: datetime | None = None) -> int:
        """Warn owners of live packages with credits left that expire within a week.

        A package gets at most one warning per 24 hours, except that crossing
        into the 3-day window always sends the urgent one.
        """
        now = now or utcnow()
        horizon = now + timedelta(days=max(EXPIRY_WARNING_DAYS))
        expiring = (
            db.query(CreditPackage)
            .filter(CreditPackage.status == PackageStatus.ACTIVE)
            .filter(CreditPackage.credits_remaining > 0)
            .filter(CreditPackage.valid_until > now)
            .filter(CreditPackage.valid_until <= horizon)
            .with_for_update()
            .all()
        )
        sent = 0
        for package in expiring:
            left = as_utc(package.valid_until) - now
            threshold = min(d for d in EXPIRY_WARNING_DAYS if left <= timedelta(days=d))
            last_at = as_utc(package.expiry_warned_at)
            escalating = package.expiry_warning_days is None or threshold < package.expiry_warning_days
            if not escalating and last_at is not None and now - last_at < EXPIRY_WARNING_REPEAT:
                continue

            remaining = int(package.credits_remaining or 0) // CREDITS_PER_CONSULTATION
            noun = "consultation" if remaining == 1 else "consultations"
            if threshold == min(EXPIRY_WARNING_DAYS):
                title = f"Credits Expiring in {threshold} Days!"
                message = (
                    f"URGENT: Your {package.package_type.value} package expires in {threshold} days! "
                    f"Don't lose your {remaining} remaining {noun}. Book now!"
                )
            else:
                title = "Credits Expiring Soon"
                message = (
                    f"Your {package.package_type.value} package expires in {threshold} days! "
                    f"You have {remaining} {noun} remaining. Book now before they expire."
                )
            package.expiry_warning_days = threshold
            package.expiry_warned_at = now
            emit_event(
                db,
                DomainEvent(
                    account_id=package.account_id,
                    kind=NOTIFICATION_KIND_EXPIRY,
                    title=title,
                    message=message,
                    related_id=str(package.id),
                ),
            )
            sent += 1
        if sent:
            logger.info("packages.warn_expiring sent=%s", sent)
        return sent
