from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from app.core.database import SessionLocal
from app.core.settings import settings
from app.core.unit_of_work import NotificationSink
from app.services.notifications import DatabaseNotificationSink
from app.services.packages import PackageManager
from app.services.plans import PlanCatalog, load_catalog


@lru_cache(maxsize=1)
def get_catalog() -> PlanCatalog:
    return load_catalog(settings.plan_catalog_path)


def get_manager(catalog: PlanCatalog = Depends(get_catalog)) -> PackageManager:
    return PackageManager(catalog)


def get_notifier() -> NotificationSink:
    return DatabaseNotificationSink(SessionLocal)
