"""relay.core.client

Async HTTP surface shared by the signal source and the venue adapters.

Each request passes a circuit breaker and a token bucket, then runs with bounded retries.
Retried: transport errors, 5xx, and 429 (honouring ``Retry-After``). Other 4xx are
final. Venue clients are built with ``max_retries=0`` so an order is sent at most once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from relay import __version__

logger = logging.getLogger(__name__)

USER_AGENT = f"signal-relay/{__version__}"


@dataclass(frozen=True, slots=True)
class ClientConfig:
    rate_limit_rps: float = 5.0
    burst: int = 1
    max_retries: int = 3
    backoff_base_s: float = 1.0
    backoff_max_s: float = 8.0
    timeout_s: float = 20.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown_s: float = 30.0


class _TokenBucket:
    """``burst`` requests may go back to back; after that, ``rate`` per second."""

    def __init__(self, rate_per_sec: float, burst: int = 1) -> None:
        self.rate = max(rate_per_sec, 0.001)
        self.capacity = float(max(burst, 1))
        self.tokens = self.capacity
        self.updated_at = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.capacity, self.tokens + (now - self.updated_at) * self.rate)
        self.updated_at = now

    async def acquire(self) -> None:
        async with self._lock:
            self._refill()
            while self.tokens < 1.0:
                await asyncio.sleep((1.0 - self.tokens) / self.rate)
                self._refill()
            self.tokens -= 1.0


class CircuitBreaker:
    """Opens after ``threshold`` consecutive failures; half-opens after ``cooldown_s``."""

    def __init__(
        self,
        threshold: int,
        cooldown_s: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = max(threshold, 1)
        self.cooldown_s = cooldown_s
        self.failures = 0
        self.opened_at: float | None = None
        self._clock = clock

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None and (self._clock() - self.opened_at) < self.cooldown_s

    def allow(self) -> bool:
        if self.opened_at is None:
            return True
        if self.is_open:
            return False
        self.failures = 0
        self.opened_at = None
        return True

    def on_success(self) -> None:
        self.failures = 0
        self.opened_at = None

    def on_failure(self) -> None:
        self.failures += 1
        if self.failures >= self.threshold and self.opened_at is None:
            self.opened_at = self._clock()
            logger.warning("circuit_breaker_opened", extra={"failures": self.failures})


def _retry_after_s(resp: httpx.Response) -> float | None:
    value = resp.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return isinstance(exc, httpx.TransportError)


class HttpClient:
    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self._bucket = _TokenBucket(self.config.rate_limit_rps, self.config.burst)
        self._breaker = CircuitBreaker(
            threshold=self.config.circuit_breaker_threshold,
            cooldown_s=self.config.circuit_breaker_cooldown_s,
        )
        self._client = httpx.AsyncClient(
            timeout=self.config.timeout_s,
            transport=transport,
            headers={"User-Agent": USER_AGENT},
        )

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    def _backoff_s(self, attempt: int, exc: Exception) -> float:
        if isinstance(exc, httpx.HTTPStatusError):
            hinted = _retry_after_s(exc.response)
            if hinted is not None:
                return min(hinted, self.config.backoff_max_s)
        return min(self.config.backoff_base_s * 2**attempt, self.config.backoff_max_s)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one request; the final ``httpx`` error propagates when retries run out."""

        if not self._breaker.allow():
            raise httpx.TransportError("circuit breaker open")

        attempt = 0
        while True:
            await self._bucket.acquire()
            try:
                resp = await self._client.request(method, url, **kwargs)
                resp.raise_for_status()
                await resp.aread()
            except (httpx.HTTPStatusError, httpx.TransportError) as e:
                if not _retryable(e):
                    raise
                self._breaker.on_failure()
                if attempt >= self.config.max_retries or self._breaker.is_open:
                    raise
                delay = self._backoff_s(attempt, e)
                logger.info(
                    "http_retry",
                    extra={"method": method, "url": str(httpx.URL(url).copy_with(query=None)), "delay_s": delay},
                )
                attempt += 1
                await asyncio.sleep(delay)
            else:
                self._breaker.on_success()
                return resp

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        expected: type | tuple[type, ...] | None = None,
        **kwargs: Any,
    ) -> Any:
        resp = await self.request(method, url, **kwargs)
        try:
            data: Any = resp.json()
        except ValueError as e:
            raise httpx.DecodingError(f"response is not JSON: {e}", request=resp.request) from e
        if expected is not None and not isinstance(data, expected):
            raise httpx.TransportError("response_schema_mismatch")
        return data
