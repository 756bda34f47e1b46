from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user
from app.schemas.credits import BalanceResponse, CreditCheckResponse, HistoryResponse, LedgerEntryResponse
from app.services import ledger


router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/credits/balance", response_model=BalanceResponse)
async def get_balance(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    return ledger.get_balance(db, current_user.id)


@router.get("/credits/history", response_model=HistoryResponse)
async def get_history(
    limit: int = Query(default=20, ge=1, le=ledger.MAX_HISTORY_LIMIT),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    entries = ledger.get_history(db, current_user.id, limit=limit, offset=offset)
    return HistoryResponse(
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        limit=limit,
        offset=offset,
    )


@router.get("/credits/check", response_model=CreditCheckResponse)
async def check_credits(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    return ledger.check_credits_available(db, current_user.id)
