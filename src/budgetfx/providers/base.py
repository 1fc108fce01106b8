"""
Base Rate Provider Interface

Rates are always returned as decimal.Decimal.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Any

from budgetfx.models import ConversionErrorType, RateLookup, to_decimal


class RateProviderError(Exception):
    """Base exception for rate provider errors."""

    error_kind: ConversionErrorType = ConversionErrorType.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        provider: str,
        error_type: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.provider = provider
        self.error_type = error_type or self.error_kind.value
        self.details = details or {}


class CurrencyNotFoundError(RateProviderError):
    """Provider answered successfully but the target currency is missing."""
    error_kind = ConversionErrorType.CURRENCY_NOT_FOUND


class ProviderReportedError(RateProviderError):
    """Provider reported a non-success result."""
    error_kind = ConversionErrorType.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        provider: str,
        provider_error: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message, provider, details=details)
        self.provider_error = provider_error


class ResponseParseError(RateProviderError):
    """Response body was empty, not JSON, or not shaped as expected."""
    error_kind = ConversionErrorType.PARSE_ERROR


class NetworkError(RateProviderError):
    """Transport failure that persisted through every retry."""
    error_kind = ConversionErrorType.NETWORK_ERROR

    def __init__(
        self,
        message: str,
        provider: str,
        attempts: int,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message, provider, details=details)
        self.attempts = attempts


class BaseRateProvider(ABC):
    """
    Abstract base class for exchange rate providers.

    All implementations MUST return rates as Decimal type.
    """

    PROVIDER_NAME: str = "base"

    @abstractmethod
    async def fetch_rate(
        self,
        source_currency: str,
        target_currency: str,
        amount: Decimal | int | float | str = Decimal("1"),
        on_date: date | None = None
    ) -> RateLookup:
        """
        Fetch the rate from source_currency to target_currency.

        Args:
            source_currency: ISO 4217 code, case-insensitive
            target_currency: ISO 4217 code, case-insensitive
            amount: Non-negative amount being converted
            on_date: Date for a historical rate; latest rate when None

        Returns:
            RateLookup with a positive Decimal rate

        Raises:
            RateProviderError: If fetching fails
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if provider is reachable and responding."""

    def _to_decimal(self, value: Any) -> Decimal:
        """Convert value to exact Decimal through its string form."""
        return to_decimal(value)
