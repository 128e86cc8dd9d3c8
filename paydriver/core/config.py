# paydriver/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import SecretStr, Field
from typing import Optional

class Settings(BaseSettings):
    # Loaded from .env or the process environment, case-insensitive,
    # unknown keys are ignored.
    model_config = SettingsConfigDict(env_file='.env', case_sensitive=False, extra='ignore')

    # Project Settings
    PROJECT_NAME: str = Field("PayDriver API")
    ENV: str = Field("nonprod")

    # Database Settings
    DATABASE_URL: str = Field("sqlite:///./paydriver.db")

    # Payment backend opened at startup
    PAYMENT_DRIVER: str = Field("stripe")
    PAYMENT_OPERATION_TIMEOUT_SECONDS: float = Field(30.0, gt=0)

    # Stripe. Read once when the Conn is built; absence only logs a warning.
    STRIPE_ACCESS_TOKEN: Optional[SecretStr] = Field(None)

    # bcrypt cost for the billing zip hash
    ZIP_HASH_ROUNDS: int = Field(10, ge=4, le=31)

    # Logging
    LOG_LEVEL: str = Field("INFO")
    LOG_JSON: bool = Field(True)

settings = Settings()
