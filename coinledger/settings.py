"""Application settings and configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Coin ledger configuration."""

    model_config = SettingsConfigDict(
        env_prefix="COINLEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "coinledger"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console or json
    allowed_origins: str = "*"

    # Coin amounts
    welcome_bonus_coins: int = Field(default=10, ge=0)
    referrer_bonus_coins: int = Field(default=20, ge=1)
    referred_bonus_coins: int = Field(default=15, ge=1)

    # Referral codes
    referral_code_length: int = Field(default=8, ge=4)

    # Store transactions
    transaction_max_attempts: int = Field(default=5, ge=1)
    transaction_retry_max_wait_seconds: float = Field(default=0.05, ge=0)

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


settings = Settings()
