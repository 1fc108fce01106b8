"""
Currency Conversion Service

Live lookup first, static fallback second (or the reverse under the
fallback_first policy); one uniform ConversionResult or a classified error.
"""

import logging
from datetime import date
from decimal import Decimal

from budgetfx.config import Settings
from budgetfx.models import (
    ConversionRequest,
    ConversionResult,
    FallbackPolicy,
    HistoricalDate,
)
from budgetfx.providers.base import BaseRateProvider, RateProviderError
from budgetfx.providers.exchangerate import ExchangeRateClient
from budgetfx.providers.fallback import FallbackRateTable, FallbackResolver

logger = logging.getLogger(__name__)


class CurrencyConversionService:
    """
    Stateless orchestration of rate fetcher and fallback resolver.

    Safe to share between concurrent requests: nothing is written after
    construction.
    """

    def __init__(
        self,
        fetcher: BaseRateProvider,
        resolver: FallbackResolver | None = None,
        policy: FallbackPolicy = FallbackPolicy.LIVE_FIRST
    ):
        self.fetcher = fetcher
        self.resolver = resolver or FallbackResolver()
        self.policy = FallbackPolicy(policy)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CurrencyConversionService":
        """Wire the live client and fallback table from configuration."""
        table = FallbackRateTable.with_overrides(settings.currency_fallback_rates)
        return cls(
            fetcher=ExchangeRateClient(settings),
            resolver=FallbackResolver(table),
            policy=FallbackPolicy(settings.currency_fallback_policy),
        )

    async def convert(
        self,
        source_currency: str,
        target_currency: str,
        amount: Decimal | int | float | str,
        on_date: date | HistoricalDate | None = None
    ) -> ConversionResult:
        """
        Convert amount from source_currency to target_currency.

        Args:
            source_currency: Currency code, case-insensitive
            target_currency: Currency code, case-insensitive
            amount: Non-negative amount
            on_date: Date for a historical rate; latest rate when None

        Returns:
            ConversionResult; used_fallback tells whether the static table
            supplied the rate

        Raises:
            ValueError: Invalid codes, amount or date
            RateProviderError: Live lookup failed and no fallback rate exists.
                The original classified error is raised unchanged.
        """
        if isinstance(on_date, date):
            on_date = HistoricalDate.from_date(on_date)
        request = ConversionRequest(
            source_currency=source_currency,
            target_currency=target_currency,
            amount=amount,
            historical_date=on_date,
        )

        if request.source_currency == request.target_currency:
            return ConversionResult.build(
                source_currency=request.source_currency,
                target_currency=request.target_currency,
                amount=request.amount,
                rate=Decimal("1"),
            )

        if self.policy is FallbackPolicy.FALLBACK_FIRST:
            result = self._resolve_fallback(request)
            if result is not None:
                return result

        try:
            lookup = await self.fetcher.fetch_rate(
                request.source_currency,
                request.target_currency,
                request.amount,
                request.historical_date.to_date() if request.historical_date else None,
            )
        except RateProviderError as e:
            logger.warning(
                f"❌ Live {request.mode.value} rate {request.source_currency}->"
                f"{request.target_currency} failed ({e.error_type}): {e}"
            )
            if self.policy is FallbackPolicy.LIVE_FIRST:
                result = self._resolve_fallback(request)
                if result is not None:
                    return result
            logger.error(
                f"Conversion {request.source_currency}->{request.target_currency} "
                f"failed with no fallback rate: {e.error_kind.value}"
            )
            raise

        return ConversionResult.build(
            source_currency=request.source_currency,
            target_currency=request.target_currency,
            amount=request.amount,
            rate=lookup.rate,
            used_fallback=False,
        )

    def _resolve_fallback(self, request: ConversionRequest) -> ConversionResult | None:
        result = self.resolver.resolve(
            request.source_currency,
            request.target_currency,
            request.amount,
        )
        if result is not None:
            logger.warning(
                f"⚠️ Using fallback rate {request.source_currency}->"
                f"{request.target_currency}={result.rate}"
            )
        return result
