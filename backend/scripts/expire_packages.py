from dotenv import load_dotenv
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

load_dotenv(".env")

import logging

from app.core.database import SessionLocal
from app.core.settings import settings
from app.core.unit_of_work import unit_of_work
from app.models import registry  # noqa: F401
from app.services.notifications import DatabaseNotificationSink
from app.services.packages import PackageManager
from app.services.plans import load_catalog


def main() -> int:
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    manager = PackageManager(load_catalog(settings.plan_catalog_path))
    db = SessionLocal()
    try:
        with unit_of_work(db, notifier=DatabaseNotificationSink(SessionLocal)):
            expired = manager.expire_stale(db)
            warned = manager.warn_expiring(db)
    finally:
        db.close()
    print(f"expired={expired} warned={warned}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
