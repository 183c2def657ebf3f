"""Application configuration from environment variables."""

from decimal import Decimal

from dotenv import load_dotenv
from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = ConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(
        default="sqlite:///./snt_ledger.db",
        description="SQLAlchemy connection string",
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/server.log", description="Server log file path")

    # Association
    association_id: str = Field(
        default="default", description="Association identifier used for period close records"
    )

    # Job runner
    job_timeout_seconds: float = Field(default=10.0, description="Timeout per job attempt")
    job_max_attempts: int = Field(default=3, description="Attempts before a job is failed")
    job_backoff_seconds: float = Field(default=0.5, description="Delay before a retried attempt")
    job_poll_interval_seconds: float = Field(default=1.0, description="Worker poll interval")

    # Matching policy
    match_threshold: float = Field(default=0.6, description="Score needed for a confident match")
    ambiguous_threshold: float = Field(default=0.3, description="Score needed to be a candidate")
    payer_weight: float = Field(default=0.8, description="Weight of scores found in payer text")

    # Penalty policy
    penalty_policy_version: str = Field(default="v1.0", description="Penalty policy identifier")
    penalty_default_rate: Decimal = Field(
        default=Decimal("0.095"), description="Default annual penalty rate"
    )

    # Telegram
    telegram_bot_token: str = Field(
        default="test_bot_token", description="Telegram bot token for campaign sends"
    )

    # Locale
    locale: str = Field(default="ru_RU", description="Locale for amount formatting")

    # API
    api_title: str = Field(default="SNT Ledger API", description="API title")
    api_version: str = Field(default="0.1.0", description="API version")


# Global settings instance
settings = Settings()
