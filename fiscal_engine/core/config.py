from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from functools import lru_cache
from zoneinfo import ZoneInfo


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "FiscalOrchestrator"
    APP_PORT: int = 9210
    DEBUG: bool = False
    INSTANCE_NAME: str = ""
    ADMIN_TOKEN: str = ""  # empty = admin endpoints open

    # Storage
    STORAGE_BACKEND: str = "local"  # local | database | memory
    DATA_PATH: str = ".data"
    LOGS_PATH: str = ".data/logs"
    DATABASE_URL: str = "sqlite:///./.data/fiscal.db"
    SQL_ECHO: bool = False
    STORAGE_TIMEOUT_SECONDS: float = Field(10.0, gt=0)

    # Business calendar
    BUSINESS_TIMEZONE: str = "Europe/Moscow"
    OFFSET_DUE_HOUR: int = Field(9, ge=0, le=23)
    STATUS_REFRESH_AT: str = "12:05"

    # Invoice ids
    INVOICE_PREFIX: str = Field("INV", min_length=1)
    ORDER_LOCK_TTL_SECONDS: float = Field(5.0, gt=0)
    ORDER_LOCK_WAIT_SECONDS: float = Field(3.0, gt=0)

    # Leases
    SCHEDULE_LEASE_TTL_SECONDS: float = Field(90.0, gt=0)
    REPAIR_LEASE_TTL_SECONDS: float = Field(300.0, gt=0)
    REFRESH_LEASE_TTL_SECONDS: float = Field(300.0, gt=0)
    OUTBOX_LEASE_TTL_SECONDS: float = Field(60.0, gt=0)

    # Worker intervals
    SCHEDULE_INTERVAL_SECONDS: int = Field(60, gt=0)
    REPAIR_INTERVAL_SECONDS: int = Field(180, gt=0)
    REPAIR_FIRST_RUN_DELAY_SECONDS: int = Field(15, ge=0)
    REFRESH_CHECK_INTERVAL_SECONDS: int = Field(60, gt=0)
    OUTBOX_INTERVAL_SECONDS: int = Field(30, gt=0)

    # Legacy ledger safety net
    SHRINK_GUARD_RATIO: float = Field(0.75, gt=0, le=1)
    SHRINK_GUARD_MIN_DELTA: int = Field(3, ge=0)
    LEDGER_BACKUP_KEEP: int = Field(20, ge=1)
    WAL_RETENTION_HOURS: float = Field(72.0, gt=0)
    LEGACY_MIRROR_ENABLED: bool = False
    HIDE_EXPIRED_ORDERS: bool = True

    # Receipt URL resolution
    URL_POLL_ATTEMPTS: int = Field(3, ge=1)
    URL_POLL_BACKOFF_SECONDS: float = Field(1.2, ge=0)
    CAPTURE_POLL_ATTEMPTS: int = Field(5, ge=1)
    CAPTURE_POLL_BACKOFF_SECONDS: float = Field(1.2, ge=0)

    # Fiscal receipt gateway (Ferma)
    FERMA_BASE_URL: str = "https://ferma.ofd.ru/"
    FERMA_LOGIN: str = ""
    FERMA_PASSWORD: str = ""
    FERMA_CASHBOX_INN: str = ""
    FERMA_CALLBACK_URL: str = ""
    FERMA_CALLBACK_SECRET: str = ""
    FERMA_TOKEN_SKEW_SECONDS: float = Field(120.0, ge=0)
    FERMA_TIMEOUT_SECONDS: float = Field(15.0, gt=0)
    DEFAULT_RECEIPT_EMAIL: str = ""

    # Payment gateway (RocketWork)
    ROCKETWORK_API_BASE_URL: str = "https://app.rocketwork.ru/api/"
    ROCKETWORK_API_TOKEN: str = ""
    ROCKETWORK_TIMEOUT_SECONDS: float = Field(15.0, gt=0)

    @field_validator("STORAGE_BACKEND")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("local", "database", "memory"):
            raise ValueError(f"unsupported storage backend: {value}")
        return value

    @field_validator("BUSINESS_TIMEZONE")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        ZoneInfo(value)
        return value

    @field_validator("STATUS_REFRESH_AT")
    @classmethod
    def _check_refresh_at(cls, value: str) -> str:
        hh, _, mm = value.partition(":")
        if not (hh.isdigit() and mm.isdigit() and int(hh) < 24 and int(mm) < 60):
            raise ValueError(f"STATUS_REFRESH_AT must be HH:MM, got {value!r}")
        return value

    class Config:
        env_file = ".env"
        extra = "ignore"

@lru_cache()
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
