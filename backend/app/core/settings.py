import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    return int(raw)


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if raw is None:
        return default
    return float(raw)


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./credits.db") or "sqlite:///./credits.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.db_statement_timeout_ms = _getenv_int("DB_STATEMENT_TIMEOUT_MS", 15000)
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")

        self.jwt_secret = _getenv("JWT_SECRET")
        self.jwt_audience = _getenv("JWT_AUDIENCE", "authenticated") or "authenticated"

        self.payment_webhook_secret = _getenv("PAYMENT_WEBHOOK_SECRET")
        self.payment_dedupe_window_seconds = _getenv_int("PAYMENT_DEDUPE_WINDOW_SECONDS", 300)

        self.plan_catalog_path = _getenv("PLAN_CATALOG_PATH")
        self.booking_lead_hours = _getenv_int("BOOKING_LEAD_HOURS", 12)
        self.session_early_start_minutes = _getenv_int("SESSION_EARLY_START_MINUTES", 15)
        self.platform_commission = _getenv_float("PLATFORM_COMMISSION", 0.12)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:3000", "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
