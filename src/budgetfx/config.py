"""
BudgetFX Configuration Management

Settings are read from environment variables (or a local .env file) and passed
explicitly into the services that need them.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class BatchProject(BaseModel):
    """A (name, year) pair converted by the batch conversion endpoint."""
    name: str
    year: int


DEFAULT_CONVERSION_BATCH = [
    BatchProject(name="Peking roasted duck Chanel", year=2000),
    BatchProject(name="Choucroute Cartier", year=2000),
    BatchProject(name="Rigua Nintendo", year=2001),
    BatchProject(name="Llapingacho Instagram", year=2000),
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # === Exchange Rate Provider ===
    exchangerate_base_url: str = Field(
        default="https://v6.exchangerate-api.com/v6",
        description="ExchangeRate-API v6 base URL"
    )
    exchangerate_api_key: str = Field(
        default="b2c3388fb59cad9fada6e3f8",
        description="ExchangeRate-API key (documented shared default)"
    )

    # === Retry / Timeout Policy ===
    currency_max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries after the first attempt on transport failures"
    )
    currency_retry_base_delay: float = Field(
        default=1.0,
        ge=0,
        description="Delay before retry n is base_delay * n seconds"
    )
    currency_request_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Per-attempt HTTP timeout in seconds"
    )
    currency_total_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Wall-clock budget for one lookup including retries"
    )

    # === Fallback Rates ===
    currency_fallback_policy: Literal["live_first", "fallback_first"] = Field(
        default="live_first",
        description="Whether the static table is consulted before or after the live provider"
    )
    currency_fallback_rates: dict[str, Decimal] = Field(
        default_factory=dict,
        description='Extra static rates merged over the defaults, e.g. {"USD/JMD": 155.2}'
    )

    # === Database Configuration ===
    database_backend: Literal["sqlite", "postgres"] = Field(default="sqlite")
    sqlite_path: str = Field(default="./data/budgetfx.db")
    database_host: str = Field(default="localhost")
    database_port: int = Field(default=5432)
    database_name: str = Field(default="budgetfx_db")
    database_user: str = Field(default="budgetfx_user")
    database_password: str = Field(default="")
    database_ssl_mode: str = Field(default="prefer")

    @property
    def database_url(self) -> str:
        """Construct PostgreSQL connection URL."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
            f"?sslmode={self.database_ssl_mode}"
        )

    # === API Configuration ===
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    # === Batch Conversion ===
    conversion_batch: list[BatchProject] = Field(
        default_factory=lambda: list(DEFAULT_CONVERSION_BATCH),
        description="Projects converted to TTD by GET /api/api-conversion"
    )
    conversion_batch_currency: str = Field(default="TTD")

    # === Logging ===
    log_level: str = Field(default="INFO")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
