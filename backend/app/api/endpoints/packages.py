from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_catalog, get_manager
from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user
from app.schemas.credits import PackageSummaryResponse
from app.schemas.package import PlanCatalogResponse, PlanResponse, UpgradeQuoteResponse
from app.services import ledger
from app.services.packages import PackageManager
from app.services.plans import PlanCatalog


router = APIRouter()


@router.get("/packages/plans", response_model=PlanCatalogResponse)
async def list_plans(catalog: PlanCatalog = Depends(get_catalog)):
    plans = sorted(catalog.plans.values(), key=lambda p: p.tier)
    return PlanCatalogResponse(
        version=catalog.version,
        plans=[
            PlanResponse(
                plan_id=p.plan_id,
                package_type=p.package_type.value,
                tier=p.tier,
                consultations=p.consultations,
                credits=p.credits,
                price_ksh=p.price_ksh,
                price_per_consultation=p.price_per_consultation,
                is_shareable=p.is_shareable,
            )
            for p in plans
        ],
    )


@router.get("/packages/status", response_model=Optional[PackageSummaryResponse])
async def package_status(
    db: Session = Depends(get_db),
    manager: PackageManager = Depends(get_manager),
    current_user: CurrentUser = Depends(get_current_user),
):
    return ledger.summarize_package(manager.get_active(db, current_user.id))


@router.get("/packages/upgrade-quote", response_model=UpgradeQuoteResponse)
async def upgrade_quote(
    plan_id: str,
    db: Session = Depends(get_db),
    manager: PackageManager = Depends(get_manager),
    current_user: CurrentUser = Depends(get_current_user),
):
    return manager.quote_upgrade(db, current_user.id, plan_id)
