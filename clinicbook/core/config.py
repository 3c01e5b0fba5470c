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
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinicbook.db")

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:8080"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")

SLOT_SAMPLE_SIZE = int(os.getenv("SLOT_SAMPLE_SIZE", "8"))
MAX_SLOT_DURATION_MINUTES = int(os.getenv("MAX_SLOT_DURATION_MINUTES", "1440"))

SCHEDULER_ENABLED = _get_bool(os.getenv("SCHEDULER_ENABLED"), default=True)
REMINDER_SWEEP_INTERVAL_SECONDS = int(os.getenv("REMINDER_SWEEP_INTERVAL_SECONDS", "60"))
REMINDER_LEAD_HOURS = int(os.getenv("REMINDER_LEAD_HOURS", "24"))
REMINDER_RECONCILE_DAYS = int(os.getenv("REMINDER_RECONCILE_DAYS", "30"))

NOTIFICATION_QUEUE_SIZE = int(os.getenv("NOTIFICATION_QUEUE_SIZE", "100"))

DEMO_ADMIN_PASSWORD = os.getenv("DEMO_ADMIN_PASSWORD", "admin123")
DEMO_PROVIDER_PASSWORD = os.getenv("DEMO_PROVIDER_PASSWORD", "provider123")

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_MAIL = os.getenv("SMTP_MAIL", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
NOTIFICATION_EMAIL_FROM = os.getenv("NOTIFICATION_EMAIL_FROM", SMTP_MAIL or "noreply@clinic.com")

TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "")
TWILIO_FROM_NUMBER = os.getenv("TWILIO_FROM_NUMBER", "")


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
