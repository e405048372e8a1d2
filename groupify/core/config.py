import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # HTTP
    CORS_ALLOWED_ORIGINS: str = "http://localhost:5173"  # comma-separated

    # Observability / Tracing
    OTEL_ENABLED: bool = False
    OTEL_EXPORTER: str = "console"  # console | memory

    # Analytics tuning
    ANALYTICS_ALL_RANGE_MAX_DAYS: int = 365  # cap for the 'all' activity window
    ANALYTICS_FRESHNESS_DECAY_PER_DAY: float = 5.0  # freshness points lost per idle day

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("groupify")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if getattr(cfg, "ANALYTICS_ALL_RANGE_MAX_DAYS", 1) < 1:
        message = "ANALYTICS_ALL_RANGE_MAX_DAYS must be at least 1"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
