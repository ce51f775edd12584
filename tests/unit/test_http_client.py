from __future__ import annotations

import httpx
import pytest

from relay.core.client import CircuitBreaker, ClientConfig, HttpClient


def _client(handler, **cfg: object) -> HttpClient:
    config = ClientConfig(rate_limit_rps=1000.0, backoff_base_s=0.0, **cfg)  # type: ignore[arg-type]
    return HttpClient(config, transport=httpx.MockTransport(handler))


@pytest.mark.anyio
async def test_request_json_schema_mismatch() -> None:
    client = _client(lambda request: httpx.Response(200, json={"ok": True}))

    with pytest.raises(httpx.TransportError):
        await client.request_json("GET", "https://example.com", expected=list)
    await client.aclose()


@pytest.mark.anyio
async def test_client_errors_are_not_retried() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(400, json={"code": -1102})

    client = _client(handler, max_retries=3)
    with pytest.raises(httpx.HTTPStatusError):
        await client.request("GET", "https://example.com/x")
    assert calls == ["/x"]
    await client.aclose()


@pytest.mark.anyio
async def test_server_errors_are_retried_then_succeed() -> None:
    responses = [httpx.Response(503), httpx.Response(200, json=[1, 2])]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    client = _client(handler, max_retries=1)
    assert await client.request_json("GET", "https://example.com", expected=list) == [1, 2]
    assert responses == []
    await client.aclose()


def test_circuit_breaker_opens_after_threshold() -> None:
    br = CircuitBreaker(threshold=2, cooldown_s=60.0)
    br.on_failure()
    assert br.allow() is True
    br.on_failure()
    assert br.allow() is False

    br.on_success()
    assert br.allow() is True


@pytest.mark.anyio
async def test_open_breaker_short_circuits() -> None:
    client = _client(lambda request: httpx.Response(500), max_retries=0, circuit_breaker_threshold=1)

    with pytest.raises(httpx.HTTPStatusError):
        await client.request("GET", "https://example.com")
    with pytest.raises(httpx.TransportError, match="circuit breaker open"):
        await client.request("GET", "https://example.com")
    await client.aclose()


@pytest.mark.anyio
async def test_rate_limited_response_is_retried() -> None:
    responses = [httpx.Response(429, headers={"Retry-After": "0"}), httpx.Response(200, json={"ok": True})]

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["User-Agent"].startswith("signal-relay/")
        return responses.pop(0)

    client = _client(handler, max_retries=2)
    assert await client.request_json("GET", "https://example.com", expected=dict) == {"ok": True}
    assert client.breaker.failures == 0
    await client.aclose()


def test_circuit_breaker_half_opens_after_cooldown() -> None:
    clock = [100.0]
    br = CircuitBreaker(threshold=1, cooldown_s=30.0, clock=lambda: clock[0])
    br.on_failure()
    assert br.allow() is False

    clock[0] += 30.0
    assert br.allow() is True
    assert br.failures == 0
