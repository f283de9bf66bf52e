import os
import logging
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class LeaveSettings(BaseModel):
    # Balances handed to an employee the first time their ledger row is read
    default_casual_balance: Decimal = Field(default=Decimal(os.getenv("LEAVE_DEFAULT_CASUAL", "0")))
    default_sick_balance: Decimal = Field(default=Decimal(os.getenv("LEAVE_DEFAULT_SICK", "0")))
    default_lop_balance: Decimal = Field(default=Decimal(os.getenv("LEAVE_DEFAULT_LOP", "10")))
    lop_balance_max: Decimal = Field(default=Decimal(os.getenv("LEAVE_LOP_BALANCE_MAX", "10")))

    lop_charges_non_working_days: bool = Field(default=_env_bool("LEAVE_LOP_CHARGES_NON_WORKING_DAYS", "true"))
    minimum_notice_days: int = Field(default=int(os.getenv("LEAVE_MINIMUM_NOTICE_DAYS", "3")))
    sick_past_days_allowed: int = Field(default=int(os.getenv("LEAVE_SICK_PAST_DAYS", "3")))
    sick_future_days_allowed: int = Field(default=int(os.getenv("LEAVE_SICK_FUTURE_DAYS", "1")))
    max_casual_per_month: Decimal = Field(default=Decimal(os.getenv("LEAVE_MAX_CASUAL_PER_MONTH", "10")))
    max_lop_per_month: Decimal = Field(default=Decimal(os.getenv("LEAVE_MAX_LOP_PER_MONTH", "5")))

    status_email_delay_seconds: float = Field(default=float(os.getenv("LEAVE_STATUS_EMAIL_DELAY_SECONDS", "60")))

    # Accrual: credited on the last working day of each month for the next one
    monthly_casual_credit: Decimal = Field(default=Decimal(os.getenv("LEAVE_MONTHLY_CASUAL_CREDIT", "1")))
    monthly_sick_credit: Decimal = Field(default=Decimal(os.getenv("LEAVE_MONTHLY_SICK_CREDIT", "0.5")))
    balance_ceiling: Decimal = Field(default=Decimal(os.getenv("LEAVE_BALANCE_CEILING", "99")))
    casual_carry_forward_max: Decimal = Field(default=Decimal(os.getenv("LEAVE_CASUAL_CARRY_FORWARD_MAX", "8")))


class EmailSettings(BaseModel):
    smtp_host: str = Field(default=os.getenv("SMTP_HOST", "localhost"))
    smtp_port: int = Field(default=int(os.getenv("SMTP_PORT", "587")))
    smtp_user: Optional[str] = Field(default=os.getenv("SMTP_USER"))
    smtp_password: Optional[str] = Field(default=os.getenv("SMTP_PASSWORD"))
    use_tls: bool = Field(default=_env_bool("SMTP_USE_TLS", "true"))
    email_from: str = Field(default=os.getenv("EMAIL_FROM", "no-reply@intranet.local"))
    from_name: str = Field(default=os.getenv("EMAIL_FROM_NAME", "HR Intranet"))
    portal_url: str = Field(default=os.getenv("PORTAL_URL", "http://localhost:3000"))

    @property
    def enabled(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)


class Config(BaseModel):
    app_name: str = "HR Intranet"
    environment: str = os.getenv("APP_ENV", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    api_prefix: str = "/api"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./intranet.db")

    # Auth
    secret_key: str = os.getenv("SECRET_KEY", "dev-only-insecure-key-DO-NOT-USE-IN-PROD")
    access_token_expire_minutes: int = 60 * 24  # 24 hours

    # Leave engine
    leave: LeaveSettings = LeaveSettings()

    # Outbound mail
    email: EmailSettings = EmailSettings()

    version: str = "1.0.0"
    request_id_header: str = "X-Request-ID"

    # CORS: comma-separated origins loaded from env
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://localhost:3001,"
                "http://127.0.0.1:3000,http://127.0.0.1:3001",
            ).split(",")
            if o.strip()
        ]
    )

    rate_limit_per_minute: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))
    rate_limit_enabled: bool = _env_bool("RATE_LIMIT_ENABLED", "true")


settings = Config()

# --- Startup Validation for Production ---
_logger = logging.getLogger(__name__)
if settings.environment == "production":
    if "dev-only" in settings.secret_key or "change-it" in settings.secret_key:
        raise RuntimeError(
            "FATAL: SECRET_KEY must be set for production. Set it as an environment variable."
        )
elif "dev-only" in settings.secret_key:
    _logger.warning("Using insecure default SECRET_KEY; only acceptable outside production.")
