import os

from dotenv import load_dotenv

load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL")
CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:4200"])

API_KEY = os.getenv("API_KEY", "")

SLOT_GRANULARITY_MINUTES = int(os.getenv("SLOT_GRANULARITY_MINUTES", "30"))
DISPLAY_UTC_OFFSET = os.getenv("DISPLAY_UTC_OFFSET", "+05:30")
DEFAULT_DOCTOR_TIMEZONE = os.getenv("DEFAULT_DOCTOR_TIMEZONE", "Asia/Kolkata")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REFRESH_TOKEN = os.getenv("GOOGLE_REFRESH_TOKEN", "")
GOOGLE_TOKEN_URI = os.getenv("GOOGLE_TOKEN_URI", "https://oauth2.googleapis.com/token")

SMTP_HOST = os.getenv("SMTP_HOST", "").strip()
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "").strip()
SMTP_PASS = os.getenv("SMTP_PASS", "").strip()
FROM_EMAIL = os.getenv("FROM_EMAIL", SMTP_USER)
SMTP_TIMEOUT_SECONDS = int(os.getenv("SMTP_TIMEOUT_SECONDS", "20"))

RECONCILE_PENDING_ON_STARTUP = _get_bool(os.getenv("RECONCILE_PENDING_ON_STARTUP"), default=True)
RECONCILIATION_STALE_MINUTES = int(os.getenv("RECONCILIATION_STALE_MINUTES", "5"))


def google_calendar_configured() -> bool:
    return bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET and GOOGLE_REFRESH_TOKEN)


def validate_runtime_config() -> None:
    if SLOT_GRANULARITY_MINUTES <= 0:
        raise RuntimeError("SLOT_GRANULARITY_MINUTES must be a positive integer.")
    if APP_ENV.lower() == "production" and not API_KEY:
        raise RuntimeError("API_KEY must be set in production.")
