"""Configuration settings for the collection scheduling engine."""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Database settings (empty -> in-memory only)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # Geo/distance provider
    OSRM_URL: str = os.getenv("OSRM_URL", "http://router.project-osrm.org")
    OSRM_PROFILE: str = os.getenv("OSRM_PROFILE", "driving")
    OSRM_TIMEOUT_SECONDS: float = float(os.getenv("OSRM_TIMEOUT_SECONDS", "10"))
    USE_OSRM: bool = _env_bool("USE_OSRM", False)
    AVERAGE_SPEED_KMH: float = float(os.getenv("AVERAGE_SPEED_KMH", "25"))

    # Priority scoring (tunable, not a contract)
    PRIORITY_WARNING_FILL: int = int(os.getenv("PRIORITY_WARNING_FILL", "50"))
    PRIORITY_URGENT_FILL: int = int(os.getenv("PRIORITY_URGENT_FILL", "80"))
    PRIORITY_STALE_HOURS: float = float(os.getenv("PRIORITY_STALE_HOURS", "72"))
    PRIORITY_MAX_AGE_BONUS: int = int(os.getenv("PRIORITY_MAX_AGE_BONUS", "2"))

    # Scheduling sweep
    PRIORITY_THRESHOLD: int = int(os.getenv("PRIORITY_THRESHOLD", "6"))
    ESCALATION_DELTA: int = int(os.getenv("ESCALATION_DELTA", "3"))
    SWEEP_ENABLED: bool = _env_bool("SWEEP_ENABLED", True)
    SWEEP_INTERVAL_SECONDS: int = int(os.getenv("SWEEP_INTERVAL_SECONDS", "3600"))
    SWEEP_WINDOW_MINUTES: int = int(os.getenv("SWEEP_WINDOW_MINUTES", "60"))

    # Route builder settings
    STOP_SERVICE_SECONDS: int = int(os.getenv("STOP_SERVICE_SECONDS", "120"))
    TWO_OPT_MAX_ITERATIONS: int = int(os.getenv("TWO_OPT_MAX_ITERATIONS", "1000"))
    ROUTE_BUILD_TIMEOUT_SECONDS: float = float(os.getenv("ROUTE_BUILD_TIMEOUT_SECONDS", "30"))
    ADHOC_WINDOW_SLACK_MINUTES: int = int(os.getenv("ADHOC_WINDOW_SLACK_MINUTES", "30"))

    # Collector directory
    COLLECTORS_CSV: str = os.getenv("COLLECTORS_CSV", "")
    COLLECTOR_API_URL: str = os.getenv("COLLECTOR_API_URL", "")
    COLLECTOR_API_TOKEN: str = os.getenv("COLLECTOR_API_TOKEN", "")
    DEFAULT_SHIFT_START_HOUR: int = int(os.getenv("DEFAULT_SHIFT_START_HOUR", "6"))
    DEFAULT_SHIFT_END_HOUR: int = int(os.getenv("DEFAULT_SHIFT_END_HOUR", "18"))
    SLOT_ROUNDING_MINUTES: int = int(os.getenv("SLOT_ROUNDING_MINUTES", "15"))
    WINDOW_SEARCH_DAYS: int = int(os.getenv("WINDOW_SEARCH_DAYS", "14"))

    # Notification sink
    NOTIFY_WEBHOOK_URL: str = os.getenv("NOTIFY_WEBHOOK_URL", "")
    NOTIFY_TIMEOUT_SECONDS: float = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "5"))

    # API settings
    API_HOST: str = os.getenv("API_HOST", "127.0.0.1")
    API_PORT: int = int(os.getenv("API_PORT", "8080"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
