import time

import httpx
import pytest

from ggd_shipping.core.http_client import (
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
    RateLimitExceeded,
    ResilientHTTPClient,
    RetryConfig,
    get_carrier_client,
)


def _client(handler, max_retries=1, failure_threshold=5) -> ResilientHTTPClient:
    return ResilientHTTPClient(
        retry_config=RetryConfig(
            max_retries=max_retries,
            base_delay=0,
            max_delay=0,
            jitter_factor=0,
        ),
        circuit_config=CircuitBreakerConfig(failure_threshold=failure_threshold, timeout_seconds=60.0),
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_request_retries_after_retry_after_header():
    """429 with Retry-After: 0 is retried and then succeeds."""
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            return httpx.Response(429, headers={"Retry-After": "0"})
        return httpx.Response(200, json={"ok": True})

    client = _client(handler)
    resp = await client.get("https://example.com/test")
    await client.close()

    assert resp.status_code == 200
    assert call_count == 2
    assert client._get_host_state("example.com").failure_count == 0


@pytest.mark.asyncio
async def test_rate_limit_exceeded_raises_fast():
    """A long Retry-After fails fast instead of stalling checkout."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "120"})

    client = _client(handler, max_retries=0)

    with pytest.raises(RateLimitExceeded) as exc_info:
        await client.get("https://example.com/test")
    await client.close()

    assert exc_info.value.wait_time == 120
    assert exc_info.value.host == "example.com"


@pytest.mark.asyncio
async def test_server_error_retried_then_raised():
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(503)

    client = _client(handler, max_retries=1)

    with pytest.raises(httpx.HTTPStatusError) as exc_info:
        await client.get("https://example.com/test")
    await client.close()

    assert exc_info.value.response.status_code == 503
    assert call_count == 2
    assert client._get_host_state("example.com").failure_count == 2


@pytest.mark.asyncio
async def test_fatal_status_not_retried_and_not_counted():
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(404, json={"error": {"errorMessage": "not found"}})

    client = _client(handler, max_retries=3)

    with pytest.raises(httpx.HTTPStatusError):
        await client.get("https://example.com/test")
    await client.close()

    assert call_count == 1
    assert client._get_host_state("example.com").failure_count == 0


@pytest.mark.asyncio
async def test_timeout_retried_then_reraised():
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client(handler, max_retries=1)

    with pytest.raises(httpx.TimeoutException):
        await client.post("https://example.com/quote", json={})
    await client.close()

    assert call_count == 2


@pytest.mark.asyncio
async def test_connection_error_recovers_on_retry():
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"ok": True})

    client = _client(handler, max_retries=1)
    resp = await client.get("https://example.com/test")
    await client.close()

    assert resp.json() == {"ok": True}
    assert call_count == 2


class TestCircuitBreaker:

    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_rejects(self):
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            return httpx.Response(500)

        client = _client(handler, max_retries=0, failure_threshold=2)

        for _ in range(2):
            with pytest.raises(httpx.HTTPStatusError):
                await client.get("https://carrier.example/rates")

        with pytest.raises(CircuitOpenError):
            await client.get("https://carrier.example/rates")
        await client.close()

        assert call_count == 2
        assert client._get_host_state("carrier.example").circuit_state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_half_open_success_closes_circuit(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        client = _client(handler, max_retries=0)
        state = client._get_host_state("carrier.example")
        state.circuit_state = CircuitState.OPEN
        state.last_failure_time = time.time() - 61

        resp = await client.get("https://carrier.example/rates")
        await client.close()

        assert resp.status_code == 200
        assert state.circuit_state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_circuits_are_per_host(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "down.example":
                return httpx.Response(500)
            return httpx.Response(200, json={})

        client = _client(handler, max_retries=0, failure_threshold=1)

        with pytest.raises(httpx.HTTPStatusError):
            await client.get("https://down.example/x")
        resp = await client.get("https://up.example/x")
        await client.close()

        assert resp.status_code == 200
        assert client._get_host_state("down.example").circuit_state == CircuitState.OPEN
        assert client._get_host_state("up.example").circuit_state == CircuitState.CLOSED


def test_parse_retry_after_seconds_and_garbage():
    client = ResilientHTTPClient()
    assert client._parse_retry_after(httpx.Response(429, headers={"Retry-After": "7"})) == 7.0
    assert client._parse_retry_after(httpx.Response(429, headers={"Retry-After": "soon"})) is None
    assert client._parse_retry_after(httpx.Response(429)) is None


def test_carrier_client_uses_settings():
    from ggd_shipping.core.config import settings

    client = get_carrier_client(default_headers={"X-Test": "1"})

    assert client.timeout == settings.SHIPPING_CARRIER_TIMEOUT_SECONDS
    assert client.retry_config.max_retries == settings.SHIPPING_CARRIER_MAX_RETRIES
    assert client.circuit_config.failure_threshold == settings.SHIPPING_CIRCUIT_FAILURE_THRESHOLD
    assert client.default_headers == {"X-Test": "1"}
