"""
Shared fixtures: settings without a .env file, a scripted provider transport,
and a recording sleep so retry tests never wait.
"""

import json
from collections.abc import Callable

import httpx
import pytest

from budgetfx.config import Settings

API_KEY = "test-key"
BASE_URL = "https://rates.test/v6"


def make_settings(**overrides) -> Settings:
    values = {
        "exchangerate_base_url": BASE_URL,
        "exchangerate_api_key": API_KEY,
        "currency_max_retries": 3,
        "currency_retry_base_delay": 0.5,
        "currency_request_timeout": 5.0,
        "currency_total_timeout": 30.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def latest_payload(rates: dict[str, float], base: str = "USD") -> dict:
    return {"result": "success", "base_code": base, "conversion_rates": rates}


def history_payload(amounts: dict[str, float], base: str = "USD") -> dict:
    return {"result": "success", "base_code": base, "conversion_amounts": amounts}


class ScriptedProvider:
    """
    httpx.MockTransport handler replaying a list of steps.

    Each step is either a dict (JSON body, 200), an httpx.Response, a str
    (raw body, 200) or an exception class raised as a transport error. The
    last step repeats once the script is exhausted.
    """

    def __init__(self, *steps):
        self.steps = list(steps)
        self.requests: list[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps[min(len(self.requests), len(self.steps)) - 1]
        if isinstance(step, type) and issubclass(step, Exception):
            raise step("simulated transport failure", request=request)
        if isinstance(step, httpx.Response):
            return step
        if isinstance(step, str):
            return httpx.Response(200, content=step.encode())
        return httpx.Response(200, content=json.dumps(step).encode())

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def provider_factory() -> Callable[..., ScriptedProvider]:
    return ScriptedProvider
