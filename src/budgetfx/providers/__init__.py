"""
BudgetFX Rate Providers

Live ExchangeRate-API client plus the static fallback table.
"""

from budgetfx.providers.base import (
    BaseRateProvider,
    CurrencyNotFoundError,
    NetworkError,
    ProviderReportedError,
    RateProviderError,
    ResponseParseError,
)
from budgetfx.providers.exchangerate import ExchangeRateClient
from budgetfx.providers.fallback import (
    DEFAULT_FALLBACK_RATES,
    FallbackRateTable,
    FallbackResolver,
)

__all__ = [
    "BaseRateProvider",
    "RateProviderError",
    "CurrencyNotFoundError",
    "ProviderReportedError",
    "ResponseParseError",
    "NetworkError",
    "ExchangeRateClient",
    "DEFAULT_FALLBACK_RATES",
    "FallbackRateTable",
    "FallbackResolver",
]
