from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.deps import get_notifier
from app.core.database import get_db
from app.core.settings import settings
from app.core.unit_of_work import NotificationSink, unit_of_work
from app.models.account import Account, Role
from app.services import ledger
from app.services.access import Actor


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: Role

    @property
    def actor(self) -> Actor:
        return Actor(id=self.id, role=self.role)


def parse_role(value: object) -> Role | None:
    raw = str(value or "").strip().upper()
    if not raw:
        return None
    try:
        return Role(raw)
    except ValueError:
        return None


def _decide_role(*, claim_role: Role | None, db_role: Role | None) -> tuple[Role, str]:
    """Pick the effective role for a request.

    A stored ADMIN always wins. A stored role set during onboarding is not
    overridden by a token claim, but an UNASSIGNED account takes the claimed
    role.
    """
    if db_role == Role.ADMIN:
        return (Role.ADMIN, "db_account")
    if db_role is not None and db_role != Role.UNASSIGNED:
        return (db_role, "db_account")
    if claim_role is not None:
        return (claim_role, "jwt_claim")
    return (Role.UNASSIGNED, "default")


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


def _decode_jwt(token: str) -> dict[str, Any]:
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="JWT_SECRET is not configured")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            options={"require": ["exp", "sub"]},
        )
        return dict(payload)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid bearer token")


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
) -> CurrentUser:
    token = _get_bearer_token(request)
    claims = _decode_jwt(token)
    user_id = str(claims.get("sub") or "").strip()
    email = str(claims.get("email") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    app_meta = claims.get("app_metadata") or {}
    if not isinstance(app_meta, dict):
        app_meta = {}
    claim_role = parse_role(app_meta.get("role")) or parse_role(claims.get("role"))

    account = db.query(Account).filter(Account.id == user_id).first()
    role, reason = _decide_role(claim_role=claim_role, db_role=(account.role if account else None))
    if account is None:
        try:
            with unit_of_work(db, notifier=notifier):
                account = ledger.open_account(db, user_id, role=role)
        except IntegrityError:
            # A concurrent first request opened it.
            return CurrentUser(id=user_id, email=email, role=ledger.get_account(db, user_id).role)
        logger.info("security.account_opened account_id=%s role=%s reason=%s", user_id, role.value, reason)
    elif account.role != role:
        with unit_of_work(db, notifier=notifier):
            account.role = role
        logger.info("security.role_assigned account_id=%s role=%s reason=%s", user_id, role.value, reason)

    return CurrentUser(id=account.id, email=email, role=role)


def require_role(*roles: Role):
    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles and user.role != Role.ADMIN:
            raise HTTPException(status_code=403, detail=f"{' or '.join(r.value.lower() for r in roles)} access required")
        return user

    return dependency
