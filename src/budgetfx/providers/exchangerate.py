"""
ExchangeRate-API Client (live provider)

API Documentation: https://www.exchangerate-api.com/docs/overview

Two endpoint shapes share one client:
    latest:  {base}/{key}/latest/{SOURCE}
             -> {"result": "success", "conversion_rates": {"TTD": 6.75, ...}}
    history: {base}/{key}/history/{SOURCE}/{year}/{month}/{day}/{amount}
             -> {"result": "success", "conversion_amounts": {"TTD": 675.0, ...}}
Failures come back as {"result": "error", "error-type": "unsupported-code"}.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    before_nothing,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from budgetfx.config import Settings
from budgetfx.models import RateLookup, RateMode, normalize_currency_code
from budgetfx.providers.base import (
    BaseRateProvider,
    CurrencyNotFoundError,
    NetworkError,
    ProviderReportedError,
    ResponseParseError,
)

logger = logging.getLogger(__name__)

RATE_FIELDS = {
    RateMode.LATEST: "conversion_rates",
    RateMode.HISTORY: "conversion_amounts",
}


class ExchangeRateClient(BaseRateProvider):
    """
    Client for ExchangeRate-API v6 rates.

    Only transport failures (connection errors, read errors, timeouts) are
    retried. Anything the provider actually answered is terminal on the first
    attempt: an unsupported currency will not appear on retry.
    """

    PROVIDER_NAME = "exchangerate-api"

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.settings = settings
        self.base_url = settings.exchangerate_base_url.rstrip("/")
        self.api_key = settings.exchangerate_api_key
        self.max_retries = settings.currency_max_retries
        self.retry_base_delay = settings.currency_retry_base_delay
        self.request_timeout = settings.currency_request_timeout
        self.total_timeout = settings.currency_total_timeout
        self._transport = transport
        self._sleep = sleep

    def build_url(
        self,
        source_currency: str,
        on_date: date | None = None,
        amount: Decimal = Decimal("1")
    ) -> str:
        """Build the provider URL for a latest or historical lookup."""
        if on_date is None:
            return f"{self.base_url}/{self.api_key}/latest/{source_currency}"
        return (
            f"{self.base_url}/{self.api_key}/history/{source_currency}"
            f"/{on_date.year}/{on_date.month}/{on_date.day}/{amount:f}"
        )

    async def fetch_rate(
        self,
        source_currency: str,
        target_currency: str,
        amount: Decimal | int | float | str = Decimal("1"),
        on_date: date | None = None
    ) -> RateLookup:
        """
        Fetch the source -> target rate from ExchangeRate-API.

        Args:
            source_currency: Currency code, upper-cased before use
            target_currency: Currency code, upper-cased before use
            amount: Non-negative amount; sent on historical lookups
            on_date: Date for a historical lookup, latest rate when None

        Returns:
            RateLookup with the Decimal rate and the number of attempts made

        Raises:
            ValueError: On empty codes or a negative/non-numeric amount
            CurrencyNotFoundError: Target currency absent from a successful response
            ProviderReportedError: Provider reported a non-success result
            ResponseParseError: Empty or malformed response body
            NetworkError: Transport failures outlasted every retry or the total budget
        """
        source = normalize_currency_code(source_currency)
        target = normalize_currency_code(target_currency)
        try:
            amount = self._to_decimal(amount)
        except InvalidOperation as e:
            raise ValueError(f"Amount must be numeric, got {amount!r}") from e
        if not amount.is_finite() or amount < 0:
            raise ValueError(f"Amount must be a non-negative number, got {amount}")

        mode = RateMode.HISTORY if on_date is not None else RateMode.LATEST
        # Historical endpoint returns converted amounts; a zero amount would
        # leave no way to recover the rate.
        requested_amount = amount if amount > 0 else Decimal("1")
        url = self.build_url(source, on_date, requested_amount)

        attempts_started = 0

        def record_attempt(retry_state: RetryCallState) -> None:
            nonlocal attempts_started
            attempts_started = retry_state.attempt_number

        try:
            response, attempts = await asyncio.wait_for(
                self._get_with_retry(url, source, before=record_attempt),
                timeout=self.total_timeout
            )
        except asyncio.TimeoutError as e:
            raise NetworkError(
                message=f"Rate lookup exceeded {self.total_timeout}s budget",
                provider=self.PROVIDER_NAME,
                attempts=attempts_started,
                details={"timeout_seconds": self.total_timeout, "source": source}
            ) from e

        data = self._parse_response(response)
        rate = self._extract_rate(data, target, mode, requested_amount)

        logger.info(
            f"ExchangeRate-API {mode.value} rate {source}->{target}={rate} "
            f"(attempts: {attempts})"
        )

        return RateLookup(
            source_currency=source,
            target_currency=target,
            rate=rate,
            mode=mode,
            attempts=attempts,
        )

    async def _get_with_retry(
        self,
        url: str,
        source: str,
        before: Callable[[RetryCallState], None] | None = None
    ) -> tuple[httpx.Response, int]:
        """GET url, retrying transport failures with a linearly growing delay."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_incrementing(
                start=self.retry_base_delay,
                increment=self.retry_base_delay
            ),
            retry=retry_if_exception_type(httpx.TransportError),
            before=before or before_nothing,
            before_sleep=self._log_retry,
            sleep=self._sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._send(url)
        except RetryError as e:
            last = e.last_attempt
            cause = last.exception()
            raise NetworkError(
                message=f"Network error: {cause}",
                provider=self.PROVIDER_NAME,
                attempts=last.attempt_number,
                details={"source": source, "exception": type(cause).__name__}
            ) from cause
        except httpx.DecodingError as e:
            raise ResponseParseError(
                message=f"Failed to decode response body: {e}",
                provider=self.PROVIDER_NAME,
                details={"source": source}
            ) from e
        except httpx.RequestError as e:
            raise NetworkError(
                message=f"Network error: {e}",
                provider=self.PROVIDER_NAME,
                attempts=attempt.retry_state.attempt_number,
                details={"source": source, "exception": type(e).__name__}
            ) from e

        return response, attempt.retry_state.attempt_number

    async def _send(self, url: str) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self.request_timeout,
            transport=self._transport
        ) as client:
            return await client.get(url)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"ExchangeRate-API transport error (attempt "
            f"{retry_state.attempt_number}/{self.max_retries + 1}): {exc!r}. "
            f"Retrying in {delay:.2f}s"
        )

    def _parse_response(self, response: httpx.Response) -> dict[str, Any]:
        """Decode the JSON body and check the provider's result flag."""
        try:
            data = self._decode_json(response)
        except ResponseParseError:
            if response.is_error:
                raise ProviderReportedError(
                    message=f"HTTP error: {response.status_code}",
                    provider=self.PROVIDER_NAME,
                    provider_error=f"HTTP_{response.status_code}",
                    details={"status_code": response.status_code}
                )
            raise

        if data.get("result") != "success":
            provider_error = data.get("error-type") or data.get("error_type") or "unknown-error"
            raise ProviderReportedError(
                message=f"API Error: {provider_error}",
                provider=self.PROVIDER_NAME,
                provider_error=provider_error,
                details={"response": data, "status_code": response.status_code}
            )

        return data

    def _decode_json(self, response: httpx.Response) -> dict[str, Any]:
        if not response.content.strip():
            raise ResponseParseError(
                message="Empty response body",
                provider=self.PROVIDER_NAME,
                details={"status_code": response.status_code}
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ResponseParseError(
                message=f"Failed to parse API response: {e}",
                provider=self.PROVIDER_NAME,
                details={"status_code": response.status_code}
            ) from e
        if not isinstance(data, dict):
            raise ResponseParseError(
                message="Invalid response: expected a JSON object",
                provider=self.PROVIDER_NAME,
                details={"response": data}
            )
        return data

    def _extract_rate(
        self,
        data: dict[str, Any],
        target: str,
        mode: RateMode,
        requested_amount: Decimal
    ) -> Decimal:
        field = RATE_FIELDS[mode]
        values = data.get(field)
        if not isinstance(values, dict):
            raise ResponseParseError(
                message=f"Invalid response: missing '{field}' field",
                provider=self.PROVIDER_NAME,
                details={"keys": sorted(data.keys())}
            )

        raw = values.get(target)
        if raw is None:
            raise CurrencyNotFoundError(
                message=f"Currency {target} not found in response",
                provider=self.PROVIDER_NAME,
                details={"available": len(values)}
            )

        try:
            value = self._to_decimal(raw)
        except InvalidOperation as e:
            raise ResponseParseError(
                message=f"Invalid value for {target}: {raw!r}",
                provider=self.PROVIDER_NAME
            ) from e

        rate = value / requested_amount if mode is RateMode.HISTORY else value
        if not rate.is_finite() or rate <= 0:
            raise ResponseParseError(
                message=f"Invalid rate for {target}: {raw!r}",
                provider=self.PROVIDER_NAME
            )
        return rate

    async def health_check(self) -> bool:
        """Check if ExchangeRate-API is reachable and accepts the key."""
        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self._transport) as client:
                response = await client.get(self.build_url("USD"))
                return response.status_code == 200 and response.json().get("result") == "success"
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning(f"ExchangeRate-API health check failed: {e!r}")
            return False
