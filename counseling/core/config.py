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

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./counseling.db")

CORS_ALLOWED_ORIGINS = _get_list(
    os.getenv("CORS_ALLOWED_ORIGINS"),
    ["http://localhost:5173", "http://localhost:3000"],
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "1440"))

# Booking trusts the client-supplied dateTime unless this is switched on.
ENFORCE_SLOT_MEMBERSHIP = _get_bool(os.getenv("ENFORCE_SLOT_MEMBERSHIP"), default=False)

DEFAULT_SLOT_START_HOUR = 9
DEFAULT_TEMPLATE_DAYS = 7
MAX_DEFAULT_SLOTS_PER_DAY = 24 - DEFAULT_SLOT_START_HOUR

DASHBOARD_POLL_SECONDS = int(os.getenv("DASHBOARD_POLL_SECONDS", "15"))
CHAT_POLL_SECONDS = int(os.getenv("CHAT_POLL_SECONDS", "5"))
NOTIFICATION_FEED_LIMIT = 15


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
