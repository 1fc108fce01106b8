"""
BudgetFX Data Models

All rates and converted amounts are decimal.Decimal; floats only appear on the
stored project record, and are converted through str before any arithmetic.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def to_decimal(value: Any) -> Decimal:
    """Convert value to exact Decimal, never through float arithmetic."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def normalize_currency_code(value: Any) -> str:
    """Strip and upper-case a currency code, rejecting empty codes."""
    code = str(value or "").strip().upper()
    if not code:
        raise ValueError("Currency code must be a non-empty string")
    return code


# === Enums ===

class RateMode(str, Enum):
    """Provider endpoint used for a lookup."""
    LATEST = "latest"
    HISTORY = "history"


class ConversionErrorType(str, Enum):
    """Classification of a failed live lookup."""
    CURRENCY_NOT_FOUND = "CURRENCY_NOT_FOUND"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"


class FallbackPolicy(str, Enum):
    """Order in which the live provider and the static table are consulted."""
    LIVE_FIRST = "live_first"
    FALLBACK_FIRST = "fallback_first"


# === Conversion ===

class HistoricalDate(BaseModel):
    """Calendar date for a historical lookup."""
    model_config = ConfigDict(frozen=True)

    year: int
    month: int
    day: int

    @model_validator(mode="after")
    def validate_calendar_date(self) -> "HistoricalDate":
        try:
            date(self.year, self.month, self.day)
        except ValueError as e:
            raise ValueError(
                f"Invalid historical date {self.year}-{self.month}-{self.day}: {e}"
            ) from e
        return self

    @classmethod
    def from_date(cls, value: date) -> "HistoricalDate":
        return cls(year=value.year, month=value.month, day=value.day)

    def to_date(self) -> date:
        return date(self.year, self.month, self.day)


class ConversionRequest(BaseModel):
    """One conversion call. Constructed per call, never persisted."""
    model_config = ConfigDict(frozen=True)

    source_currency: str
    target_currency: str
    amount: Decimal = Field(ge=Decimal("0"))
    historical_date: HistoricalDate | None = None

    @field_validator("source_currency", "target_currency", mode="before")
    @classmethod
    def normalize_code(cls, v: Any) -> str:
        return normalize_currency_code(v)

    @field_validator("amount", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        try:
            return to_decimal(v)
        except InvalidOperation as e:
            raise ValueError(f"Amount must be numeric, got {v!r}") from e

    @property
    def mode(self) -> RateMode:
        return RateMode.HISTORY if self.historical_date else RateMode.LATEST


class RateLookup(BaseModel):
    """A rate obtained from the live provider."""
    model_config = ConfigDict(frozen=True)

    source_currency: str
    target_currency: str
    rate: Decimal = Field(gt=Decimal("0"))
    mode: RateMode = RateMode.LATEST
    attempts: int = Field(default=1, ge=1)


class ConversionResult(BaseModel):
    """
    Outcome of a successful conversion.

    converted_amount is always exactly amount * rate.
    """
    model_config = ConfigDict(frozen=True)

    success: bool = True
    source_currency: str
    target_currency: str
    amount: Decimal
    rate: Decimal
    converted_amount: Decimal
    used_fallback: bool = False

    @classmethod
    def build(
        cls,
        source_currency: str,
        target_currency: str,
        amount: Decimal,
        rate: Decimal,
        used_fallback: bool = False
    ) -> "ConversionResult":
        """Create a result, computing converted_amount from amount and rate."""
        amount = to_decimal(amount)
        rate = to_decimal(rate)
        return cls(
            source_currency=source_currency,
            target_currency=target_currency,
            amount=amount,
            rate=rate,
            converted_amount=amount * rate,
            used_fallback=used_fallback,
        )

    @model_validator(mode="after")
    def validate_exact_product(self) -> "ConversionResult":
        if self.converted_amount != self.amount * self.rate:
            raise ValueError(
                f"converted_amount ({self.converted_amount}) "
                f"!= amount * rate ({self.amount * self.rate})"
            )
        return self


# === Project Budget Records ===

class CamelModel(BaseModel):
    """Base for API-facing records serialized with camelCase keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        allow_inf_nan=False
    )


class ProjectBudgetCreate(CamelModel):
    """A project budget row as received from clients and stored in `project`."""
    project_id: int
    project_name: str = Field(min_length=1)
    year: int = Field(ge=1900, le=2100)
    currency: str
    initial_budget_local: float = Field(ge=0)
    budget_usd: float = Field(ge=0)
    initial_schedule_estimate_months: int
    adjusted_schedule_estimate_months: int
    contingency_rate: float
    escalation_rate: float
    final_budget_usd: float = Field(ge=0)

    @field_validator("project_name", mode="before")
    @classmethod
    def strip_name(cls, v: Any) -> str:
        return str(v).strip() if v is not None else v

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_code(cls, v: Any) -> str:
        return normalize_currency_code(v)


class ProjectBudget(ProjectBudgetCreate):
    """A project budget row read back from storage."""
