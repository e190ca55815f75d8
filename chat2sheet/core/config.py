# chat2sheet/core/config.py - Centralized settings management using Pydantic
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with validation and type safety"""

    # Application Environment
    ENV: str = Field(default="dev", description="Environment: dev, staging, prod")
    DEBUG: bool = Field(default=False, description="Debug mode")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, ge=1, le=65535, description="API port")
    API_TITLE: str = Field(default="Chat2Sheet Fee Assistant", description="API title")
    API_VERSION: str = Field(default="1.0.0", description="API version")
    PUBLIC_BASE_URL: str = Field(default="http://localhost:8000", description="Public URL used in payment links")

    # School / locale
    SCHOOL_NAME: str = Field(default="School", description="School name used in guardian messages")
    DEFAULT_COUNTRY_CODE: str = Field(default="91", description="Country code prefixed to guardian numbers")
    CURRENCY: str = Field(default="INR", description="Payment gateway currency")
    CURRENCY_SYMBOL: str = Field(default="₹", description="Currency symbol used in chat messages")

    # Ledger backend
    LEDGER_BACKEND: str = Field(default="sheets", description="Ledger backend: sheets or sql")
    SPREADSHEET_ID: Optional[str] = Field(default=None, description="Google spreadsheet id")
    GOOGLE_CREDENTIALS_FILE: Optional[str] = Field(default=None, description="Service account key file")
    SHEETS_API_URL: str = Field(default="https://sheets.googleapis.com/v4", description="Sheets API base URL")
    SHEETS_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0, description="Sheets request timeout")
    SHEET_STUDENTS: str = Field(default="Student_info")
    SHEET_FEES: str = Field(default="Totalfee_details")
    SHEET_INSTALLMENTS: str = Field(default="Installment_details")
    SHEET_LOGS: str = Field(default="Log_details")

    # Database Configuration (sql ledger backend)
    DATABASE_URL: str = Field(default="sqlite:///./chat2sheet.db", description="Database connection URL")
    DATABASE_ECHO: bool = Field(default=False, description="Echo SQL queries")
    DATABASE_POOL_SIZE: int = Field(default=5, ge=1, le=100, description="Connection pool size")
    DATABASE_MAX_OVERFLOW: int = Field(default=10, ge=0, le=100, description="Max overflow connections")
    DATABASE_POOL_RECYCLE: int = Field(default=3600, ge=300, description="Pool recycle time in seconds")

    # LLM Configuration (OpenAI-compatible chat completions, e.g. Groq)
    LLM_API_URL: str = Field(default="https://api.groq.com/openai/v1", description="LLM API base URL")
    LLM_API_KEY: Optional[str] = Field(default=None, description="LLM API key")
    LLM_CLASSIFIER_MODEL: str = Field(default="openai/gpt-oss-120b", description="Model for intent classification")
    LLM_PARSER_MODEL: str = Field(default="llama-3.3-70b-versatile", description="Model for write parsing")
    LLM_READ_MODEL: str = Field(default="llama-3.3-70b-versatile", description="Model for read parsing")
    LLM_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0, description="LLM request timeout")

    # WhatsApp Cloud API
    WHATSAPP_API_URL: str = Field(default="https://graph.facebook.com", description="Graph API base URL")
    WHATSAPP_API_VERSION: str = Field(default="v18.0", description="Graph API version")
    WHATSAPP_ACCESS_TOKEN: Optional[str] = Field(default=None, description="WhatsApp access token")
    WHATSAPP_PHONE_NUMBER_ID: Optional[str] = Field(default=None, description="WhatsApp phone number id")
    WHATSAPP_VERIFY_TOKEN: Optional[str] = Field(default=None, description="Webhook verify token")
    WHATSAPP_TIMEOUT: int = Field(default=30, ge=1, le=300, description="WhatsApp request timeout")

    # Razorpay
    RAZORPAY_API_URL: str = Field(default="https://api.razorpay.com/v1", description="Razorpay API base URL")
    RAZORPAY_KEY_ID: Optional[str] = Field(default=None, description="Razorpay key id")
    RAZORPAY_KEY_SECRET: Optional[str] = Field(default=None, description="Razorpay key secret")
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = Field(default=None, description="Razorpay webhook secret")

    # Conversation
    CONFIRMATION_TTL_MINUTES: int = Field(default=0, ge=0, description="Pending confirmation expiry, 0 disables")

    # Admin API
    ADMIN_API_KEY: Optional[str] = Field(default=None, description="Key required by the admin ledger routes")

    # Receipts
    INVOICE_DIR: str = Field(default="invoices", description="Scratch directory for receipt PDFs")

    # CORS Configuration
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="CORS allowed origins"
    )

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="detailed", description="Log format: simple, detailed")
    LOG_FILE_PATH: Optional[str] = Field(default=None, description="Log file path")
    LOG_MAX_SIZE: int = Field(default=10485760, description="Max log file size in bytes (10MB)")
    LOG_BACKUP_COUNT: int = Field(default=5, description="Number of log backup files")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"  # Ignore extra environment variables

    @field_validator("ENV")
    @classmethod
    def validate_environment(cls, v):
        allowed_envs = ["dev", "development", "test", "staging", "prod", "production"]
        if v.lower() not in allowed_envs:
            raise ValueError(f"ENV must be one of: {allowed_envs}")
        return v.lower()

    @field_validator("LEDGER_BACKEND")
    @classmethod
    def validate_ledger_backend(cls, v):
        if v.lower() not in ("sheets", "sql"):
            raise ValueError("LEDGER_BACKEND must be 'sheets' or 'sql'")
        return v.lower()

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v):
        allowed_prefixes = (
            "postgresql://",
            "postgresql+psycopg2://",
            "postgresql+psycopg://",
            "sqlite://",
        )
        if not v.startswith(allowed_prefixes):
            raise ValueError("DATABASE_URL must be a postgresql or sqlite connection string")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed_levels}")
        return v.upper()

    @field_validator("DEFAULT_COUNTRY_CODE")
    @classmethod
    def validate_country_code(cls, v):
        v = v.strip().lstrip("+")
        if not v.isdigit():
            raise ValueError("DEFAULT_COUNTRY_CODE must be digits, e.g. 91")
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            # Handle comma-separated string
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.ENV in ["dev", "development"]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode"""
        return self.ENV in ["prod", "production"]

    @property
    def whatsapp_base_url(self) -> str:
        return f"{self.WHATSAPP_API_URL.rstrip('/')}/{self.WHATSAPP_API_VERSION}"

    def sheet_names(self) -> dict:
        """Sheet name per ledger collection"""
        return {
            "students": self.SHEET_STUDENTS,
            "fees": self.SHEET_FEES,
            "installments": self.SHEET_INSTALLMENTS,
            "logs": self.SHEET_LOGS,
        }


# Create settings instance with validation
try:
    settings = Settings()
except Exception as e:
    print(f"Configuration error: {e}")
    print("Please check your .env file and environment variables")
    raise


def validate_critical_settings(config: Settings = settings) -> List[str]:
    """
    Validate settings that the running service needs.

    Missing values are fatal in production and logged as warnings elsewhere,
    so local development and tests can start with a partial environment.
    """
    critical_errors = []

    if config.LEDGER_BACKEND == "sheets" and not config.SPREADSHEET_ID:
        critical_errors.append("SPREADSHEET_ID is required for the sheets ledger backend")

    if not config.LLM_API_KEY:
        critical_errors.append("LLM_API_KEY is required for message classification")

    if not all([config.WHATSAPP_ACCESS_TOKEN, config.WHATSAPP_PHONE_NUMBER_ID]):
        critical_errors.append("WHATSAPP_ACCESS_TOKEN and WHATSAPP_PHONE_NUMBER_ID are required")

    if not config.WHATSAPP_VERIFY_TOKEN:
        critical_errors.append("WHATSAPP_VERIFY_TOKEN is required for the webhook handshake")

    if not config.RAZORPAY_WEBHOOK_SECRET:
        critical_errors.append("RAZORPAY_WEBHOOK_SECRET is required to accept payment webhooks")

    if critical_errors:
        error_msg = "Critical configuration errors:\n" + "\n".join(f"  - {error}" for error in critical_errors)
        if config.is_production:
            raise ValueError(error_msg)
        logger.warning(error_msg)

    return critical_errors


# Export settings
__all__ = ["settings", "Settings", "validate_critical_settings"]
