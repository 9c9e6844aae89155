import os
import logging
from pydantic import BaseModel, Field
from typing import List
from dotenv import load_dotenv

load_dotenv()


class LedgerSettings(BaseModel):
    # Tolerance between a month snapshot and the ledger delta of the same month
    balance_tolerance_hours: float = float(os.getenv("BALANCE_TOLERANCE", "0.01"))
    history_page_size: int = int(os.getenv("HISTORY_PAGE_SIZE", "100"))


class CorrectionSettings(BaseModel):
    reason_min_length: int = int(os.getenv("CORRECTION_REASON_MIN_LENGTH", "10"))
    allowed_types: List[str] = Field(
        default_factory=lambda: ["system_error", "absence_credit", "migration", "manual"]
    )


class VacationSettings(BaseModel):
    carryover_cap_days: float = float(os.getenv("VACATION_CARRYOVER_CAP", "5"))
    default_days_per_year: float = float(os.getenv("DEFAULT_VACATION_DAYS", "30"))


class Config(BaseModel):
    app_name: str = "Worktime Ledger"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"
    version: str = "1.0.0"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./worktime.db")

    # Calendar
    timezone: str = os.getenv("APP_TIMEZONE", "Europe/Berlin")
    default_holiday_region: str = os.getenv("HOLIDAY_REGION", "BY")

    # Time entry rules (ArbZG)
    max_daily_work_hours: float = float(os.getenv("MAX_DAILY_WORK_HOURS", "10"))
    max_entry_hours: float = 16.0
    break_required_after_hours: float = 6.0
    min_break_minutes: int = 30

    ledger: LedgerSettings = LedgerSettings()
    corrections: CorrectionSettings = CorrectionSettings()
    vacation: VacationSettings = VacationSettings()

    request_id_header: str = "X-Request-ID"
    actor_id_header: str = "X-Actor-Id"

    # Rate limit of the all-employee batch endpoints (recalculate-all, year-end rollover)
    batch_rate_limit: str = os.getenv("BATCH_RATE_LIMIT", "5/minute")

    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if o.strip()
        ]
    )


settings = Config()

_logger = logging.getLogger(__name__)
if settings.environment == "production" and settings.database_url.startswith("sqlite"):
    _logger.warning("Running production with SQLite: per-employee row locks are process-local only.")
