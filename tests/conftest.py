"""
Pytest configuration and fixtures for the shipping service tests.
"""
import asyncio
import os
from decimal import Decimal
from typing import Callable, List, Optional
from unittest.mock import AsyncMock

import httpx
import pytest

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["AUSPOST_API_KEY"] = "test-auspost-key"
os.environ["INTERPARCEL_API_KEY"] = "test-interparcel-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("SHIPPING_TIER_CATALOG_PATH", None)

from ggd_shipping.core.http_client import CircuitBreakerConfig, ResilientHTTPClient, RetryConfig  # noqa: E402
from ggd_shipping.modules.shipping.carriers.base import BaseCarrier, CarrierCode  # noqa: E402
from ggd_shipping.modules.shipping.models import (  # noqa: E402
    Address,
    CarrierQuote,
    ServiceClass,
    ShipmentRequest,
    ShippableItem,
)
from ggd_shipping.modules.shipping.tiers import default_tiers  # noqa: E402


class StubCarrier(BaseCarrier):
    """In-memory carrier. get_quotes is an AsyncMock so calls can be asserted."""

    def __init__(
        self,
        name: str,
        quotes: Optional[List[CarrierQuote]] = None,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
    ):
        super().__init__(http_client=None)
        self._name = name
        self._quotes = quotes or []
        self._error = error
        self._delay = delay
        self.get_quotes = AsyncMock(side_effect=self._respond)
        self.close = AsyncMock()

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.AUSPOST

    @property
    def carrier_name(self) -> str:
        return self._name

    async def _respond(self, request, quote_filter=None):
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error:
            raise self._error
        return list(self._quotes)

    async def get_quotes(self, request, quote_filter=None):  # replaced per instance
        return []


@pytest.fixture
def catalog():
    return default_tiers()


@pytest.fixture
def make_quote() -> Callable[..., CarrierQuote]:
    def _make(
        price: str,
        carrier: str = "Australia Post",
        eta_min: int = 2,
        eta_max: int = 4,
        service_level: ServiceClass = ServiceClass.REGULAR,
        service_name: str = "Parcel Post",
        is_satchel: bool = False,
    ) -> CarrierQuote:
        return CarrierQuote(
            carrier_name=carrier,
            service_name=service_name,
            price_amount=Decimal(price),
            currency="AUD",
            eta_min_days=eta_min,
            eta_max_days=eta_max,
            is_satchel=is_satchel,
            service_level=service_level,
        )
    return _make


@pytest.fixture
def small_item() -> ShippableItem:
    """Remote control sized part."""
    return ShippableItem(weight_kg=0.3, length_cm=15, width_cm=8, height_cm=4)


@pytest.fixture
def shipment(small_item) -> ShipmentRequest:
    return ShipmentRequest(
        origin=Address(postcode="3220", city="Geelong", state="VIC"),
        destination=Address(postcode="3000", city="Melbourne", state="VIC"),
        items=(small_item,),
    )


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], ResilientHTTPClient]:
    """ResilientHTTPClient over an httpx.MockTransport, no retries or sleeps."""
    def _build(handler, max_retries: int = 0) -> ResilientHTTPClient:
        return ResilientHTTPClient(
            retry_config=RetryConfig(
                max_retries=max_retries,
                base_delay=0,
                max_delay=0,
                jitter_factor=0,
            ),
            circuit_config=CircuitBreakerConfig(failure_threshold=100),
            timeout=5.0,
            transport=httpx.MockTransport(handler),
        )
    return _build


@pytest.fixture
def make_carrier() -> Callable[..., StubCarrier]:
    return StubCarrier
