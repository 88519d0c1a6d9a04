import os

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except ValueError:
        return int(default)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "1" if default else "0").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return bool(default)


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./salonbook.db")
    DB_AUTO_CREATE_ALL = _get_bool("DB_AUTO_CREATE_ALL", True)

    DEFAULT_SALON_TIMEZONE = os.getenv("DEFAULT_SALON_TIMEZONE", "Africa/Kigali").strip()
    DEFAULT_OPEN_TIME = os.getenv("DEFAULT_OPEN_TIME", "09:00").strip()
    DEFAULT_CLOSE_TIME = os.getenv("DEFAULT_CLOSE_TIME", "18:00").strip()
    SLOT_STEP_MINUTES = _get_int("SLOT_STEP_MINUTES", 30)
    AVAILABILITY_WINDOW_DAYS = _get_int("AVAILABILITY_WINDOW_DAYS", 30)
    DEFAULT_SERVICE_DURATION_MIN = _get_int("DEFAULT_SERVICE_DURATION_MIN", 30)

    API_BASE_URL = os.getenv("API_BASE_URL", "http://127.0.0.1:8000")
    API_TIMEOUT_SECONDS = _get_int("API_TIMEOUT_SECONDS", 10)

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    SECURITY_HEADERS_ENABLED = _get_bool("SECURITY_HEADERS_ENABLED", True)
    MAINTENANCE_MODE = _get_bool("MAINTENANCE_MODE", False)
    MAINTENANCE_RETRY_AFTER_SECONDS = _get_int("MAINTENANCE_RETRY_AFTER_SECONDS", 120)


settings = Settings()
