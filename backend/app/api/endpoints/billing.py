from __future__ import annotations

import hashlib
import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.api.deps import get_manager, get_notifier
from app.core.database import get_db
from app.core.settings import settings
from app.core.unit_of_work import NotificationSink
from app.schemas.package import PaymentConfirmedRequest, PaymentConfirmedResponse
from app.services.packages import PackageManager
from app.services.payments import on_payment_confirmed


logger = logging.getLogger(__name__)

router = APIRouter()


def sign_payload(raw_body: bytes, secret: str) -> str:
    return hmac.new(key=secret.encode("utf-8"), msg=raw_body, digestmod=hashlib.sha256).hexdigest()


def _verify_webhook_signature(raw_body: bytes, signature: str | None) -> None:
    if not settings.payment_webhook_secret:
        raise HTTPException(status_code=500, detail="PAYMENT_WEBHOOK_SECRET is not configured")
    sig = (signature or "").strip()
    if not sig:
        raise HTTPException(status_code=400, detail="Missing X-Signature")
    digest = sign_payload(raw_body, str(settings.payment_webhook_secret))
    if not hmac.compare_digest(digest, sig):
        logger.warning("billing.webhook.bad_signature")
        raise HTTPException(status_code=400, detail="Invalid signature")


@router.post("/billing/payments/confirmed", response_model=PaymentConfirmedResponse)
async def payment_confirmed(
    request: Request,
    db: Session = Depends(get_db),
    manager: PackageManager = Depends(get_manager),
    notifier: NotificationSink = Depends(get_notifier),
):
    raw_body = await request.body()
    _verify_webhook_signature(raw_body, request.headers.get("x-signature"))
    try:
        body = PaymentConfirmedRequest.model_validate_json(raw_body)
    except PydanticValidationError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    result = on_payment_confirmed(
        db,
        manager,
        body.account_id,
        body.plan_id,
        body.amount_paid,
        body.reference_id,
        subscription=body.subscription,
        notifier=notifier,
    )
    return PaymentConfirmedResponse(
        received=True,
        reference_id=result.reference_id,
        kind=result.kind,
        package_id=result.package_id,
        duplicate=result.duplicate,
    )
