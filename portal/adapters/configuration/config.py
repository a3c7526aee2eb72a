# portal/adapters/configuration/config.py

import json
from functools import lru_cache
from logging import getLevelName
from typing import Annotated, Dict, List, Optional, Union

from pydantic import Field, PostgresDsn, field_validator, ConfigDict
from pydantic_settings import BaseSettings, NoDecode

LOG_LEVEL_NAMES = ("error", "warn", "info", "http", "debug")


class Settings(BaseSettings):
    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None
    SERVICE_NAME: str = "portal"

    # Environment
    ENVIRONMENT: str = "development"  # "development", "production", "testing"
    DEBUG: bool = False
    RELEASE: str = "0.1.0"

    # Database
    DB_DRIVER: str = "asyncpg"
    POSTGRES_USER: str = "portal"
    POSTGRES_PASSWORD: str = "portal"
    POSTGRES_DB: str = "portal"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[PostgresDsn] = Field(default=None, validate_default=True)
    DB_CREATE_TABLES: bool = True

    # Auth
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 24

    # Shared counter store
    REDIS_URL: str = "redis://localhost:6379/0"

    # Rate limiting, rule name -> "limit/window_seconds"
    RATE_LIMIT_RULES: Dict[str, str] = {"default": "100/60", "sensitive": "10/60"}
    # seconds between error records for a failing counter store
    RATE_LIMIT_FAULT_LOG_INTERVAL: float = 60.0

    # External forwarding and alerts
    ALERT_MIN_LEVEL: str = "warn"
    LOG_FORWARD_IN_BACKGROUND: bool = True
    LOG_FORWARD_DRAIN_TIMEOUT: float = 10.0
    ERROR_TRACKING_URL: Optional[str] = None
    ERROR_TRACKING_TOKEN: Optional[str] = None
    ERROR_TRACKING_TIMEOUT: float = 5.0
    ALERT_WEBHOOK_URL: Optional[str] = None

    # SMTP
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    SMTP_FROM: str = "alerts@localhost"
    SMTP_RETRY_ATTEMPTS: int = 3
    SMTP_RETRY_DELAY: float = 1.0
    ERROR_ALERT_RECIPIENTS: Annotated[List[str], NoDecode] = []
    WARNING_ALERT_RECIPIENTS: Annotated[List[str], NoDecode] = []
    INFO_ALERT_RECIPIENTS: Annotated[List[str], NoDecode] = []

    # Retention
    LOG_RETENTION_DAYS: int = 30
    LOG_CLEANUP_INTERVAL_HOURS: int = 24

    # Anomaly detection over persisted request logs
    ANOMALY_DETECTION_ENABLED: bool = True
    ANOMALY_WINDOW_MINUTES: int = 60
    ANOMALY_BASELINE_WINDOWS: int = 24
    ANOMALY_THRESHOLD: float = 2.0

    @field_validator("DATABASE_URL", mode="before")
    def assemble_db_url(cls, value, info):
        if value:
            return value

        data = info.data
        return PostgresDsn.build(
            scheme=f"postgresql+{data.get('DB_DRIVER', 'asyncpg')}",
            username=data["POSTGRES_USER"],
            password=data["POSTGRES_PASSWORD"],
            host=data["POSTGRES_HOST"],
            port=data["POSTGRES_PORT"],
            path=data["POSTGRES_DB"],
        )

    @field_validator(
        "ERROR_ALERT_RECIPIENTS", "WARNING_ALERT_RECIPIENTS", "INFO_ALERT_RECIPIENTS",
        mode="before",
    )
    def assemble_recipients(cls, v: Union[str, List[str]]) -> List[str]:
        """
        Accepts a CSV string ('a@x,b@y'), a JSON list string or a list.
        """
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                return json.loads(v)
            return [addr.strip() for addr in v.split(",") if addr.strip()]
        if isinstance(v, list):
            return v
        raise ValueError(f"Invalid recipient list: {v!r}")

    @field_validator("LOG_LEVEL", mode="before")
    def validate_log_level(cls, v: str) -> str:
        """Ensures the value is a valid stdlib logging level."""
        lvl = v.upper()
        if not isinstance(getLevelName(lvl), int):
            raise ValueError(f"Invalid LOG_LEVEL: {v!r}")
        return lvl

    @field_validator("ALERT_MIN_LEVEL", mode="before")
    def validate_alert_level(cls, v: str) -> str:
        lvl = v.lower()
        if lvl == "warning":
            lvl = "warn"
        if lvl not in LOG_LEVEL_NAMES:
            raise ValueError(f"Invalid ALERT_MIN_LEVEL: {v!r}")
        return lvl

    @field_validator("RATE_LIMIT_RULES")
    def validate_rate_limit_rules(cls, v: Dict[str, str]) -> Dict[str, str]:
        for name, rule in v.items():
            limit, sep, window = str(rule).partition("/")
            if not sep or not limit.strip().isdigit() or not window.strip().isdigit():
                raise ValueError(f"Rate limit rule '{name}' must look like 'limit/window', got {rule!r}")
            if int(window) <= 0:
                raise ValueError(f"Rate limit rule '{name}' needs a positive window")
        return v

    model_config = ConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
