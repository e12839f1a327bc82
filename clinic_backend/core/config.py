import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:4200").split(",")
    if origin.strip()
]

CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "UTC")

ROOM_POOL_SIZE = _get_int(os.getenv("ROOM_POOL_SIZE"), 3)
DEFAULT_SLOT_INTERVAL_MINUTES = _get_int(os.getenv("DEFAULT_SLOT_INTERVAL_MINUTES"), 60)
DEFAULT_MIN_ADVANCE_MINUTES = _get_int(os.getenv("DEFAULT_MIN_ADVANCE_MINUTES"), 0)
DEFAULT_MAX_BOOKING_PERIOD_DAYS = _get_int(os.getenv("DEFAULT_MAX_BOOKING_PERIOD_DAYS"), 30)
MAX_APPOINTMENT_DURATION_MINUTES = _get_int(os.getenv("MAX_APPOINTMENT_DURATION_MINUTES"), 480)

SLOT_CACHE_TTL_SECONDS = _get_int(os.getenv("SLOT_CACHE_TTL_SECONDS"), 30)
REDIS_URL = os.getenv("REDIS_URL", "")

NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL", "")
NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "10"))

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if ROOM_POOL_SIZE < 1:
        raise RuntimeError("ROOM_POOL_SIZE must be at least 1.")
    if DEFAULT_SLOT_INTERVAL_MINUTES not in {10, 15, 30, 60}:
        raise RuntimeError("DEFAULT_SLOT_INTERVAL_MINUTES must be one of 10, 15, 30 or 60.")
