"""
Static Fallback Rates

Best-effort rates used when the live provider is unavailable or lacks a pair.
The table is built once at startup and never mutated afterwards.
"""

import logging
from collections.abc import Iterator, Mapping
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any

from budgetfx.models import ConversionResult, normalize_currency_code, to_decimal

logger = logging.getLogger(__name__)

CurrencyPairKey = tuple[str, str]

# Inverses are listed explicitly: lookups never derive 1/rate.
DEFAULT_FALLBACK_RATES: dict[CurrencyPairKey, Decimal] = {
    ("USD", "TTD"): Decimal("6.75"),
    ("TTD", "USD"): Decimal("0.148"),
    ("USD", "EUR"): Decimal("0.92"),
    ("EUR", "USD"): Decimal("1.09"),
    ("USD", "GBP"): Decimal("0.79"),
    ("GBP", "USD"): Decimal("1.27"),
}


def parse_pair(key: str) -> CurrencyPairKey:
    """Parse "USD/TTD" (or "USD_TTD") into ("USD", "TTD")."""
    for sep in ("/", "_", "-"):
        if sep in key:
            source, _, target = key.partition(sep)
            return normalize_currency_code(source), normalize_currency_code(target)
    raise ValueError(f"Invalid currency pair {key!r}, expected 'SRC/DST'")


class FallbackRateTable(Mapping[CurrencyPairKey, Decimal]):
    """
    Read-only mapping of (source, target) -> positive finite Decimal rate.

    Lookups are pair-exact; an entry for USD->TTD says nothing about TTD->USD.
    """

    def __init__(self, rates: Mapping[Any, Any] | None = None):
        table: dict[CurrencyPairKey, Decimal] = {}
        source = DEFAULT_FALLBACK_RATES if rates is None else rates
        for key, value in source.items():
            pair = parse_pair(key) if isinstance(key, str) else (
                normalize_currency_code(key[0]),
                normalize_currency_code(key[1]),
            )
            table[pair] = self._validate_rate(pair, value)
        self._rates = MappingProxyType(table)

    @classmethod
    def with_overrides(cls, overrides: Mapping[str, Any]) -> "FallbackRateTable":
        """Default rates with configured "SRC/DST" entries merged on top."""
        merged: dict[Any, Any] = dict(DEFAULT_FALLBACK_RATES)
        for key, value in overrides.items():
            merged[parse_pair(key)] = value
        return cls(merged)

    @staticmethod
    def _validate_rate(pair: CurrencyPairKey, value: Any) -> Decimal:
        try:
            rate = to_decimal(value)
        except InvalidOperation as e:
            raise ValueError(f"Fallback rate for {pair[0]}/{pair[1]} is not numeric: {value!r}") from e
        if not rate.is_finite() or rate <= 0:
            raise ValueError(f"Fallback rate for {pair[0]}/{pair[1]} must be positive and finite, got {rate}")
        return rate

    def __getitem__(self, pair: CurrencyPairKey) -> Decimal:
        return self._rates[pair]

    def __iter__(self) -> Iterator[CurrencyPairKey]:
        return iter(self._rates)

    def __len__(self) -> int:
        return len(self._rates)

    def lookup(self, source_currency: str, target_currency: str) -> Decimal | None:
        return self._rates.get(
            (normalize_currency_code(source_currency), normalize_currency_code(target_currency))
        )


class FallbackResolver:
    """Pure, synchronous lookup against a FallbackRateTable."""

    def __init__(self, table: FallbackRateTable | None = None):
        self.table = table if table is not None else FallbackRateTable()

    def resolve(
        self,
        source_currency: str,
        target_currency: str,
        amount: Decimal | int | float | str
    ) -> ConversionResult | None:
        """
        Convert amount using the static table.

        Returns:
            ConversionResult flagged used_fallback=True, or None when the
            exact pair is not tabulated
        """
        source = normalize_currency_code(source_currency)
        target = normalize_currency_code(target_currency)
        rate = self.table.lookup(source, target)
        if rate is None:
            logger.debug(f"No fallback rate for {source}->{target}")
            return None

        return ConversionResult.build(
            source_currency=source,
            target_currency=target,
            amount=to_decimal(amount),
            rate=rate,
            used_fallback=True,
        )
