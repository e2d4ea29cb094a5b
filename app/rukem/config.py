import os
from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    association_name: str
    default_benefit_amount: int
    ledger_summary_months: int

    session_hours: int
    max_upload_mb: int
    stats_cache_seconds: int

    @property
    def is_production(self) -> bool:
        return self.env.lower() in ("prod", "production")


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int, minimum: int = 0) -> int:
    """Integer env var; unparsable or too-small values fall back to the default."""
    try:
        value = int(_getenv(name, str(default)))
    except ValueError:
        return default
    return value if value >= minimum else default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///rukem.db"),
        association_name=_getenv("ASSOCIATION_NAME", "RUKEM"),
        default_benefit_amount=_getenv_int("DEFAULT_BENEFIT_AMOUNT", 5_000_000),
        ledger_summary_months=_getenv_int("LEDGER_SUMMARY_MONTHS", 6, minimum=1),
        session_hours=_getenv_int("SESSION_HOURS", 8, minimum=1),
        max_upload_mb=_getenv_int("MAX_UPLOAD_MB", 5, minimum=1),
        stats_cache_seconds=_getenv_int("STATS_CACHE_SECONDS", 30),
    )


def load_config() -> dict:
    """Flask config mapping built from the environment (.env is loaded by create_app)."""
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "ASSOCIATION_NAME": s.association_name,
        "DEFAULT_BENEFIT_AMOUNT": s.default_benefit_amount,
        "LEDGER_SUMMARY_MONTHS": s.ledger_summary_months,
        "STATS_CACHE_SECONDS": s.stats_cache_seconds,
        # staff sessions
        "PERMANENT_SESSION_LIFETIME": timedelta(hours=s.session_hours),
        "SESSION_REFRESH_EACH_REQUEST": True,
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": s.is_production,
        # member register uploads (CSV/XLSX)
        "MAX_CONTENT_LENGTH": s.max_upload_mb * 1024 * 1024,
    }
