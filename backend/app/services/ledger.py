from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.errors import (
    AccountNotFound,
    InsufficientCredits,
    IntegrityViolation,
    NoFundingSource,
    ValidationError,
)
from app.core.unit_of_work import DomainEvent, emit_event
from app.models.account import Account, Role
from app.models.credit_ledger import LedgerEntry, LedgerKind
from app.models.credit_package import CreditPackage, PackageStatus
from app.services.plans import CREDITS_PER_CONSULTATION


logger = logging.getLogger(__name__)

WELCOME_BONUS_CREDITS = 2
MAX_HISTORY_LIMIT = 100


@dataclass(frozen=True)
class PackageSummary:
    package_id: int
    package_type: str
    consultations: int
    consultations_used: float
    consultations_remaining: float
    credits_remaining: int
    valid_until: datetime
    days_remaining: int
    price_per_consultation: int


@dataclass(frozen=True)
class BalanceSummary:
    credits: int
    consultations_available: int
    active_package: PackageSummary | None


@dataclass(frozen=True)
class CreditCheck:
    has_credits: bool
    credits: int
    consultations_available: int
    active_package: PackageSummary | None


def get_account(db: Session, account_id: str, *, lock: bool = False) -> Account:
    query = db.query(Account).filter(Account.id == account_id)
    if lock:
        query = query.with_for_update()
    acct = query.first()
    if acct is None:
        raise AccountNotFound(f"Account {account_id} not found", account_id=account_id)
    return acct


def open_account(db: Session, account_id: str, role: Role = Role.UNASSIGNED, now: datetime | None = None) -> Account:
    """Create the account with its one-time welcome bonus, or return the existing one."""
    account_id = str(account_id or "").strip()
    if not account_id:
        raise ValidationError("account_id is required")
    acct = db.query(Account).filter(Account.id == account_id).first()
    if acct is not None:
        return acct

    now = now or utcnow()
    acct = Account(id=account_id, role=role, credits=0)
    db.add(acct)
    db.flush()
    _write_entry(
        db,
        acct,
        amount=WELCOME_BONUS_CREDITS,
        kind=LedgerKind.WELCOME_BONUS,
        description="Welcome bonus: 1 free consultation (2 credits)",
        now=now,
    )
    emit_event(
        db,
        DomainEvent(
            account_id=account_id,
            kind="SYSTEM",
            title="Welcome!",
            message="You've received 1 free consultation to get started.",
        ),
    )
    logger.info("ledger.open_account account_id=%s role=%s", account_id, role.value)
    return acct


def find_active_package(
    db: Session,
    account_id: str,
    now: datetime | None = None,
    *,
    lock: bool = False,
) -> CreditPackage | None:
    now = now or utcnow()
    query = (
        db.query(CreditPackage)
        .filter(CreditPackage.account_id == account_id)
        .filter(CreditPackage.status == PackageStatus.ACTIVE)
        .filter(CreditPackage.valid_until > now)
        .order_by(CreditPackage.purchased_at.desc(), CreditPackage.id.desc())
    )
    if lock:
        query = query.with_for_update()
    return query.first()


def _restore_target(
    db: Session, account_id: str, package_id: int | None, now: datetime
) -> CreditPackage | None:
    if package_id is not None:
        package = (
            db.query(CreditPackage)
            .filter(CreditPackage.id == package_id, CreditPackage.account_id == account_id)
            .filter(CreditPackage.status == PackageStatus.ACTIVE)
            .filter(CreditPackage.valid_until > now)
            .with_for_update()
            .first()
        )
        if package is not None:
            return package
    return find_active_package(db, account_id, now=now, lock=True)


def has_consumed_welcome_bonus(db: Session, account_id: str) -> bool:
    spent = (
        db.query(LedgerEntry.id)
        .filter(LedgerEntry.account_id == account_id)
        .filter(LedgerEntry.kind == LedgerKind.WELCOME_BONUS)
        .filter(LedgerEntry.amount < 0)
        .first()
    )
    return spent is not None


def _write_entry(
    db: Session,
    acct: Account,
    *,
    amount: int,
    kind: LedgerKind,
    description: str | None,
    package_id: int | None = None,
    appointment_id: int | None = None,
    now: datetime | None = None,
) -> LedgerEntry:
    before = int(acct.credits or 0)
    after = before + int(amount)
    if after < 0:
        logger.error(
            "ledger.integrity.negative_balance account_id=%s before=%s amount=%s", acct.id, before, amount
        )
        raise IntegrityViolation("Balance would become negative", account_id=acct.id)
    acct.credits = after
    entry = LedgerEntry(
        account_id=acct.id,
        amount=int(amount),
        kind=kind,
        description=description,
        balance_before=before,
        balance_after=after,
        package_id=package_id,
        appointment_id=appointment_id,
        created_at=now or utcnow(),
    )
    db.add(entry)
    db.flush()
    return entry


def deduct(
    db: Session,
    account_id: str,
    amount: int,
    *,
    description: str | None = None,
    appointment_id: int | None = None,
    now: datetime | None = None,
) -> LedgerEntry:
    """Charge `amount` credits against the account's funding source.

    Runs inside the caller's unit of work: the account row is locked, the
    balance, the funding package and the ledger entry change together.

    Funding order: the welcome bonus while it has not been spent (even when a
    package is also present), then the active package. An account with credits
    but neither source is rejected with `NoFundingSource`.
    """
    amount = int(amount)
    if amount <= 0:
        raise ValidationError("amount must be positive")

    now = now or utcnow()
    acct = get_account(db, account_id, lock=True)
    balance = int(acct.credits or 0)
    if balance < amount:
        raise InsufficientCredits(
            f"Insufficient credits: {amount} needed, {balance} available",
            account_id=account_id,
            needed=amount,
            available=balance,
        )

    use_bonus = amount == WELCOME_BONUS_CREDITS and not has_consumed_welcome_bonus(db, account_id)
    package = None
    if not use_bonus:
        package = find_active_package(db, account_id, now=now, lock=True)
        if package is None or int(package.credits_remaining or 0) < amount:
            raise NoFundingSource("No active package found", account_id=account_id)

    if use_bonus:
        kind = LedgerKind.WELCOME_BONUS
        text = description or "Welcome bonus consultation (FREE)"
    else:
        kind = LedgerKind.SPENT
        package.credits_used = int(package.credits_used or 0) + amount
        package.credits_remaining = int(package.credits_remaining or 0) - amount
        text = description or f"{package.package_type.value} package consultation"

    entry = _write_entry(
        db,
        acct,
        amount=-amount,
        kind=kind,
        description=text,
        package_id=(package.id if package is not None else None),
        appointment_id=appointment_id,
        now=now,
    )
    emit_event(
        db,
        DomainEvent(
            account_id=acct.id,
            kind="CREDITS",
            title="Credits used",
            message=f"{amount} credits were used. Remaining balance: {acct.credits}.",
            related_id=(str(appointment_id) if appointment_id is not None else None),
        ),
    )
    logger.info(
        "ledger.deduct account_id=%s amount=%s kind=%s package_id=%s balance_after=%s",
        acct.id,
        amount,
        kind.value,
        entry.package_id,
        entry.balance_after,
    )
    return entry


def credit(
    db: Session,
    account_id: str,
    amount: int,
    *,
    kind: LedgerKind,
    description: str | None = None,
    package_id: int | None = None,
    restore_package: bool = False,
    appointment_id: int | None = None,
    now: datetime | None = None,
) -> LedgerEntry:
    """Add credits to the account as a purchase or a refund.

    With `restore_package` the quota goes back to the funding package while it
    is still live, otherwise to the account's current active package. Used
    credits move back first; anything beyond that extends the package total,
    the same way a rollover does. With no active package only the balance moves.
    """
    amount = int(amount)
    if amount <= 0:
        raise ValidationError("amount must be positive")
    if kind not in (LedgerKind.PURCHASE, LedgerKind.REFUND):
        raise ValidationError(f"Cannot credit with kind {kind.value}")

    now = now or utcnow()
    acct = get_account(db, account_id, lock=True)

    if restore_package:
        package = _restore_target(db, account_id, package_id, now)
        if package is not None:
            restored = max(0, min(amount, int(package.credits_used or 0)))
            package.credits_used = int(package.credits_used or 0) - restored
            package.total_credits = int(package.total_credits or 0) + (amount - restored)
            package.credits_remaining = int(package.credits_remaining or 0) + amount
            logger.info(
                "ledger.credit.restore_package package_id=%s funding_package_id=%s restored=%s",
                package.id,
                package_id,
                amount,
            )
            package_id = package.id
        else:
            logger.warning("ledger.credit.restore_package.no_active account_id=%s amount=%s", account_id, amount)

    entry = _write_entry(
        db,
        acct,
        amount=amount,
        kind=kind,
        description=description,
        package_id=package_id,
        appointment_id=appointment_id,
        now=now,
    )
    logger.info(
        "ledger.credit account_id=%s amount=%s kind=%s package_id=%s balance_after=%s",
        acct.id,
        amount,
        kind.value,
        package_id,
        entry.balance_after,
    )
    return entry


def get_history(db: Session, account_id: str, limit: int = 20, offset: int = 0) -> list[LedgerEntry]:
    limit = int(limit)
    offset = int(offset)
    if limit <= 0 or limit > MAX_HISTORY_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}")
    if offset < 0:
        raise ValidationError("offset must not be negative")
    get_account(db, account_id)
    return (
        db.query(LedgerEntry)
        .filter(LedgerEntry.account_id == account_id)
        .order_by(LedgerEntry.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def summarize_package(package: CreditPackage | None, now: datetime | None = None) -> PackageSummary | None:
    if package is None:
        return None
    now = now or utcnow()
    valid_until = as_utc(package.valid_until)
    seconds_left = (valid_until - now).total_seconds()
    days_remaining = max(0, int(-(-seconds_left // 86400)))
    return PackageSummary(
        package_id=package.id,
        package_type=package.package_type.value,
        consultations=int(package.consultations or 0),
        consultations_used=int(package.credits_used or 0) / CREDITS_PER_CONSULTATION,
        consultations_remaining=int(package.credits_remaining or 0) / CREDITS_PER_CONSULTATION,
        credits_remaining=int(package.credits_remaining or 0),
        valid_until=valid_until,
        days_remaining=days_remaining,
        price_per_consultation=int(package.price_per_consultation or 0),
    )


def get_balance(db: Session, account_id: str, now: datetime | None = None) -> BalanceSummary:
    now = now or utcnow()
    acct = get_account(db, account_id)
    credits = int(acct.credits or 0)
    return BalanceSummary(
        credits=credits,
        consultations_available=credits // CREDITS_PER_CONSULTATION,
        active_package=summarize_package(find_active_package(db, account_id, now=now), now=now),
    )


def check_credits_available(db: Session, account_id: str, now: datetime | None = None) -> CreditCheck:
    """Answer whether one consultation could be booked right now.

    Uses the same funding rule as `deduct`: the unspent welcome bonus, or an
    active package holding enough credits.
    """
    now = now or utcnow()
    balance = get_balance(db, account_id, now=now)
    fundable = not has_consumed_welcome_bonus(db, account_id)
    if not fundable and balance.active_package is not None:
        fundable = balance.active_package.credits_remaining >= CREDITS_PER_CONSULTATION
    return CreditCheck(
        has_credits=fundable and balance.credits >= CREDITS_PER_CONSULTATION,
        credits=balance.credits,
        consultations_available=balance.consultations_available,
        active_package=balance.active_package,
    )


def replay_balance(db: Session, account_id: str) -> int:
    """Fold every entry in creation order, checking each link of the chain."""
    running = 0
    entries = (
        db.query(LedgerEntry)
        .filter(LedgerEntry.account_id == account_id)
        .order_by(LedgerEntry.id.asc())
        .all()
    )
    for entry in entries:
        if entry.balance_before != running or entry.balance_after != running + entry.amount:
            logger.error(
                "ledger.integrity.broken_chain account_id=%s entry_id=%s expected_before=%s",
                account_id,
                entry.id,
                running,
            )
            raise IntegrityViolation("Ledger chain is broken", account_id=account_id, entry_id=entry.id)
        running += int(entry.amount)
    return running


def verify_balance(db: Session, account_id: str) -> int:
    acct = get_account(db, account_id)
    replayed = replay_balance(db, account_id)
    if replayed != int(acct.credits or 0):
        logger.error(
            "ledger.integrity.balance_mismatch account_id=%s stored=%s replayed=%s",
            account_id,
            acct.credits,
            replayed,
        )
        raise IntegrityViolation("Stored balance does not match the ledger", account_id=account_id)
    return replayed
