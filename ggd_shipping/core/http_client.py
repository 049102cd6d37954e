"""
Carrier HTTP Client

Every Australia Post and Interparcel call goes through ResilientHTTPClient:

- One timeout per attempt (SHIPPING_CARRIER_TIMEOUT_SECONDS)
- Retries only for timeouts, connection errors, 429 and 5xx, with
  exponential backoff and jitter
- Retry-After honoured up to MAX_RATE_LIMIT_WAIT; longer waits fail fast
  with RateLimitExceeded so checkout is never held hostage by one carrier
- A circuit per carrier host: after repeated failures the host is skipped
  until a test request succeeds

4xx answers other than 429 are the carrier speaking, not failing. They are
never retried and never trip the circuit.
"""
import asyncio
import logging
import random
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Dict, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

# Longest Retry-After (seconds) worth waiting on while a customer waits
MAX_RATE_LIMIT_WAIT = 10.0


class RateLimitExceeded(Exception):
    """A carrier asked us to back off for longer than MAX_RATE_LIMIT_WAIT."""

    def __init__(self, host: str, wait_time: float):
        self.host = host
        self.wait_time = wait_time
        super().__init__(f"Rate limited by {host} for {wait_time:.0f}s")


class CircuitOpenError(Exception):
    """The carrier host has failed too often and is being skipped."""

    def __init__(self, host: str, remaining: float):
        self.host = host
        self.remaining = remaining
        super().__init__(f"Circuit open for {host} ({remaining:.1f}s until retry)")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryConfig:
    max_retries: int = 1
    base_delay: float = 0.5
    max_delay: float = 5.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.5

    retryable_status_codes: tuple = (429, 500, 502, 503, 504)
    fatal_status_codes: tuple = (400, 401, 403, 404)

    def backoff(self, attempt: int) -> float:
        """base * exp_base^attempt, +/- jitter, capped at max_delay."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay += delay * self.jitter_factor * (2 * random.random() - 1)
        return max(0.0, min(delay, self.max_delay))


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 1
    timeout_seconds: float = 60.0


@dataclass
class HostState:
    """Circuit breaker bookkeeping for one carrier host."""
    circuit_state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: float = 0.0

    def admit(self, host: str, config: CircuitBreakerConfig) -> None:
        """Raise CircuitOpenError unless a request to host may go out now."""
        if self.circuit_state != CircuitState.OPEN:
            return

        elapsed = time.time() - self.last_failure_time
        if elapsed > config.timeout_seconds:
            logger.info(f"[CIRCUIT] {host}: half-open, sending test request")
            self.circuit_state = CircuitState.HALF_OPEN
            self.success_count = 0
            return

        remaining = config.timeout_seconds - elapsed
        logger.warning(f"[CIRCUIT] {host}: open, skipping ({remaining:.1f}s left)")
        raise CircuitOpenError(host, remaining)

    def succeeded(self, host: str, config: CircuitBreakerConfig) -> None:
        self.failure_count = 0
        if self.circuit_state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= config.success_threshold:
                logger.info(f"[CIRCUIT] {host}: closed")
                self.circuit_state = CircuitState.CLOSED

    def failed(self, host: str, config: CircuitBreakerConfig) -> None:
        self.failure_count += 1
        self.success_count = 0
        self.last_failure_time = time.time()

        if self.circuit_state == CircuitState.HALF_OPEN:
            logger.warning(f"[CIRCUIT] {host}: test request failed, reopening")
            self.circuit_state = CircuitState.OPEN
        elif self.failure_count >= config.failure_threshold:
            logger.error(f"[CIRCUIT] {host}: opening after {self.failure_count} failures")
            self.circuit_state = CircuitState.OPEN


class ResilientHTTPClient:
    """
    httpx.AsyncClient with carrier retry and circuit policy.

    The underlying AsyncClient is created on first use; call close() (or
    use ``async with``) to release connections.
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        circuit_config: Optional[CircuitBreakerConfig] = None,
        timeout: float = 10.0,
        default_headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.circuit_config = circuit_config or CircuitBreakerConfig()
        self.timeout = timeout
        self.default_headers = default_headers or {}
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._host_states: Dict[str, HostState] = {}

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def init(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.default_headers,
                transport=self._transport,
                follow_redirects=True,
            )
        return self

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_host_state(self, host: str) -> HostState:
        return self._host_states.setdefault(host, HostState())

    def _parse_retry_after(self, response: httpx.Response) -> Optional[float]:
        """Retry-After as seconds (delta-seconds or HTTP date), or None."""
        value = response.headers.get("Retry-After")
        if not value:
            return None
        if value.strip().isdigit():
            return float(value.strip())
        try:
            return max(0.0, parsedate_to_datetime(value).timestamp() - time.time())
        except (TypeError, ValueError):
            return None

    async def _pause(self, host: str, attempt: int, reason: str) -> None:
        delay = self.retry_config.backoff(attempt)
        logger.warning(f"[HTTP] {host}: {reason}, retry {attempt + 1} in {delay:.1f}s")
        await asyncio.sleep(delay)

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a request under the retry and circuit policy.

        Raises:
            httpx.HTTPStatusError: fatal 4xx, or 429/5xx once retries run out
            httpx.TimeoutException / httpx.TransportError: once retries run out
            RateLimitExceeded: Retry-After longer than MAX_RATE_LIMIT_WAIT
            CircuitOpenError: host circuit is open
        """
        await self.init()

        host = urlparse(url).netloc
        state = self._get_host_state(host)
        retry = self.retry_config
        state.admit(host, self.circuit_config)

        for attempt in range(retry.max_retries + 1):
            final = attempt == retry.max_retries
            logger.debug(f"[HTTP] {method} {host} attempt {attempt + 1}/{retry.max_retries + 1}")

            try:
                response = await self._client.request(method, url, **kwargs)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                state.failed(host, self.circuit_config)
                if final:
                    logger.error(f"[HTTP] {host}: giving up after {attempt + 1} attempt(s): {e!r}")
                    raise
                await self._pause(host, attempt, e.__class__.__name__)
                continue

            status = response.status_code

            if status == 429:
                wait = self._parse_retry_after(response)
                if wait is None:
                    wait = retry.backoff(attempt)
                if wait > MAX_RATE_LIMIT_WAIT:
                    logger.error(f"[HTTP] {host}: asked to wait {wait:.0f}s, failing fast")
                    raise RateLimitExceeded(host, wait)
                if final:
                    response.raise_for_status()
                logger.warning(f"[HTTP] {host}: 429, waiting {wait:.1f}s")
                await asyncio.sleep(wait)
                continue

            if status in retry.retryable_status_codes:
                state.failed(host, self.circuit_config)
                if final:
                    logger.error(f"[HTTP] {host}: HTTP {status} after {attempt + 1} attempt(s)")
                    response.raise_for_status()
                await self._pause(host, attempt, f"HTTP {status}")
                continue

            # Any other answer means the host is up
            state.succeeded(host, self.circuit_config)
            if status in retry.fatal_status_codes:
                logger.warning(f"[HTTP] {host}: HTTP {status}, not retrying")
                response.raise_for_status()
            return response

        raise httpx.TransportError(f"Request to {host} failed after {retry.max_retries + 1} attempts")

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)


def get_carrier_client(
    default_headers: Optional[Dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ResilientHTTPClient:
    """Client for carrier rate APIs, tuned from settings."""
    from ggd_shipping.core.config import settings

    return ResilientHTTPClient(
        retry_config=RetryConfig(
            max_retries=settings.SHIPPING_CARRIER_MAX_RETRIES,
            base_delay=settings.SHIPPING_RETRY_BASE_DELAY,
        ),
        circuit_config=CircuitBreakerConfig(
            failure_threshold=settings.SHIPPING_CIRCUIT_FAILURE_THRESHOLD,
            timeout_seconds=settings.SHIPPING_CIRCUIT_TIMEOUT_SECONDS,
        ),
        timeout=settings.SHIPPING_CARRIER_TIMEOUT_SECONDS,
        default_headers=default_headers,
        transport=transport,
    )
