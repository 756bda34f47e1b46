from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from app.core.errors import UnknownPlan, ValidationError
from app.models.credit_package import PackageType


logger = logging.getLogger(__name__)

CREDITS_PER_CONSULTATION = 2

DEFAULT_CATALOG: dict[str, Any] = {
    "version": "2024-01",
    "purchase_validity_days": 365,
    "subscription_validity_days": 30,
    "plans": {
        "starter": {
            "package_type": "STARTER",
            "tier": 1,
            "consultations": 5,
            "price_ksh": 2500,
            "price_per_consultation": 500,
            "is_shareable": False,
        },
        "family": {
            "package_type": "FAMILY",
            "tier": 2,
            "consultations": 8,
            "price_ksh": 3800,
            "price_per_consultation": 475,
            "is_shareable": True,
        },
        "wellness": {
            "package_type": "WELLNESS",
            "tier": 3,
            "consultations": 10,
            "price_ksh": 4500,
            "price_per_consultation": 450,
            "is_shareable": True,
        },
    },
}


@dataclass(frozen=True)
class Plan:
    plan_id: str
    package_type: PackageType
    tier: int
    consultations: int
    price_ksh: int
    price_per_consultation: int
    is_shareable: bool

    @property
    def credits(self) -> int:
        return self.consultations * CREDITS_PER_CONSULTATION


@dataclass(frozen=True)
class PlanCatalog:
    version: str
    plans: Mapping[str, Plan]
    purchase_validity_days: int = 365
    subscription_validity_days: int = 30

    def get(self, plan_id: str) -> Plan:
        key = str(plan_id or "").strip().lower()
        plan = self.plans.get(key)
        if plan is None:
            raise UnknownPlan(f"Unknown plan: {plan_id!r}", plan_id=plan_id)
        return plan

    def for_type(self, package_type: PackageType) -> Plan:
        for plan in self.plans.values():
            if plan.package_type == package_type:
                return plan
        raise UnknownPlan(f"No plan for package type {package_type.value}")

    def tier_of(self, package_type: PackageType) -> int:
        return self.for_type(package_type).tier


def build_catalog(data: Mapping[str, Any]) -> PlanCatalog:
    version = str(data.get("version") or "").strip()
    if not version:
        raise ValidationError("Plan catalog needs a version")
    raw_plans = data.get("plans") or {}
    if not isinstance(raw_plans, Mapping) or not raw_plans:
        raise ValidationError("Plan catalog needs at least one plan")

    plans: dict[str, Plan] = {}
    for plan_id, raw in raw_plans.items():
        key = str(plan_id).strip().lower()
        try:
            plan = Plan(
                plan_id=key,
                package_type=PackageType(str(raw["package_type"]).upper()),
                tier=int(raw["tier"]),
                consultations=int(raw["consultations"]),
                price_ksh=int(raw["price_ksh"]),
                price_per_consultation=int(raw["price_per_consultation"]),
                is_shareable=bool(raw.get("is_shareable", False)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid plan definition for {plan_id!r}") from exc
        if plan.consultations <= 0 or plan.price_ksh < 0 or plan.price_per_consultation < 0:
            raise ValidationError(f"Invalid plan amounts for {plan_id!r}")
        plans[key] = plan

    tiers = [p.tier for p in plans.values()]
    if len(set(tiers)) != len(tiers):
        raise ValidationError("Plan tiers must be distinct")

    return PlanCatalog(
        version=version,
        plans=MappingProxyType(plans),
        purchase_validity_days=int(data.get("purchase_validity_days") or 365),
        subscription_validity_days=int(data.get("subscription_validity_days") or 30),
    )


def load_catalog(path: str | None = None) -> PlanCatalog:
    if not path:
        return build_catalog(DEFAULT_CATALOG)
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    catalog = build_catalog(data)
    logger.info("plans.load_catalog path=%s version=%s plans=%s", path, catalog.version, len(catalog.plans))
    return catalog
