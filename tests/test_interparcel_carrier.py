"""
Tests for the Interparcel aggregator adapter.
"""
import json
from decimal import Decimal

import httpx
import pytest

from ggd_shipping.core.exceptions import (
    CarrierUnavailableError,
    QuoteParseError,
    QuoteRejectedError,
)
from ggd_shipping.modules.shipping.carriers.base import QuoteRequest
from ggd_shipping.modules.shipping.comparator import select_cheapest
from ggd_shipping.modules.shipping.carriers.interparcel import (
    QUOTE_PATH,
    InterparcelCarrier,
    is_satchel_service,
    map_service_level,
)
from ggd_shipping.modules.shipping.models import (
    Address,
    PackedParcel,
    QuoteFilter,
    ServiceClass,
    ShippableItem,
)
from ggd_shipping.modules.shipping.tiers import find_tier
from ggd_shipping.schemas.shipping import QuoteResponse

BASE_URL = "https://interparcel.test"

SERVICES = [
    {
        "id": "CP-STD",
        "carrier": "Couriers Please",
        "name": "Couriers Please Road",
        "serviceLevel": "Standard",
        "price": 12.0,
        "currency": "AUD",
        "delivery": {"daysFrom": 2, "daysTo": 4},
    },
    {
        "id": "AP-SAT",
        "carrier": "Australia Post",
        "name": "Parcel Post Prepaid Satchel",
        "serviceLevel": "standard",
        "price": "9.50",
        "delivery": {"daysFrom": 3, "daysTo": 5},
    },
    {
        "id": "STAR-EXP",
        "carrier": "StarTrack",
        "name": "StarTrack Express",
        "serviceLevel": "Express",
        "price": "18.40",
        "delivery": {"daysFrom": 1},
    },
]


def _ok(services=None):
    return httpx.Response(200, json={"status": 0, "services": SERVICES if services is None else services})


def _request(catalog, units=1, classes=(ServiceClass.REGULAR,)):
    item = ShippableItem(2.0, 20, 15, 7)
    return QuoteRequest(
        origin=Address(postcode="3220", city="Geelong", state="VIC"),
        destination=Address(postcode="2000", city="Sydney", state="NSW"),
        parcels_by_class={
            sc: (PackedParcel.pack(item, find_tier("Bx1", sc, catalog)),) * units
            for sc in classes
        },
    )


class TestRequest:

    @pytest.mark.asyncio
    async def test_headers_and_body(self, catalog, mock_http):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _ok()

        carrier = InterparcelCarrier(http_client=mock_http(handler), api_key="ip-key", base_url=BASE_URL, api_version="3")
        await carrier.get_quotes(_request(catalog, units=2))
        await carrier.close()

        assert len(seen) == 1
        sent = seen[0]
        assert sent.method == "POST"
        assert sent.url.path == QUOTE_PATH
        assert sent.headers["X-Interparcel-Auth"] == "ip-key"
        assert sent.headers["X-Interparcel-API-Version"] == "3"

        body = json.loads(sent.content)
        assert body["collection"] == {"city": "Geelong", "state": "VIC", "postcode": "3220", "country": "AU"}
        assert body["delivery"]["postcode"] == "2000"
        assert body["parcels"] == [{"weight": 2.0, "length": 22.0, "width": 16.0, "height": 7.7}] * 2
        assert "filter" not in body

    @pytest.mark.asyncio
    async def test_filter_forwarded(self, catalog, mock_http):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return _ok()

        carrier = InterparcelCarrier(http_client=mock_http(handler), api_key="k", base_url=BASE_URL)
        quote_filter = QuoteFilter(carriers=("StarTrack",), service_levels=(ServiceClass.EXPRESS,))
        quotes = await carrier.get_quotes(
            _request(catalog, classes=(ServiceClass.REGULAR, ServiceClass.EXPRESS)),
            quote_filter,
        )
        await carrier.close()

        assert bodies[0]["filter"] == {"carriers": ["StarTrack"], "serviceLevel": ["express"]}
        assert [q.carrier_name for q in quotes] == ["StarTrack"]

    @pytest.mark.asyncio
    async def test_identically_packed_classes_share_one_request(self, catalog, mock_http):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return _ok()

        carrier = InterparcelCarrier(http_client=mock_http(handler), api_key="k", base_url=BASE_URL)
        quotes = await carrier.get_quotes(_request(catalog, classes=(ServiceClass.REGULAR, ServiceClass.EXPRESS)))
        await carrier.close()

        assert len(calls) == 1
        assert {q.service_level for q in quotes} == {ServiceClass.REGULAR, ServiceClass.EXPRESS}

    @pytest.mark.asyncio
    async def test_own_name_in_filter_asks_for_every_courier(self, catalog, mock_http):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return _ok()

        carrier = InterparcelCarrier(http_client=mock_http(handler), api_key="k", base_url=BASE_URL)
        quote_filter = QuoteFilter(carriers=("Interparcel",))
        quotes = await carrier.get_quotes(_request(catalog), quote_filter)
        await carrier.close()

        assert "filter" not in bodies[0]
        cheapest = select_cheapest(quotes, quote_filter)
        assert cheapest.carrier_name == "Australia Post"
        assert cheapest.via == "Interparcel"

    def test_carrier_always_serves(self):
        carrier = InterparcelCarrier(api_key="k", base_url=BASE_URL)
        assert carrier.serves(QuoteFilter(carriers=("Sendle",)))


class TestParseServices:

    @pytest.mark.asyncio
    async def test_services_normalized(self, catalog, mock_http):
        carrier = InterparcelCarrier(http_client=mock_http(lambda request: _ok()), api_key="k", base_url=BASE_URL)
        quotes = await carrier.get_quotes(_request(catalog))
        await carrier.close()

        by_id = {q.service_code: q for q in quotes}
        assert set(by_id) == {"CP-STD", "AP-SAT"}

        satchel = by_id["AP-SAT"]
        assert satchel.carrier_name == "Australia Post"
        assert satchel.price_amount == Decimal("9.50")
        assert satchel.is_satchel is True
        assert satchel.service_level == ServiceClass.REGULAR
        assert (satchel.eta_min_days, satchel.eta_max_days) == (3, 5)

        road = by_id["CP-STD"]
        assert road.price_amount == Decimal("12.00")
        assert road.is_satchel is False

    @pytest.mark.asyncio
    async def test_numeric_id_becomes_string_service_code(self, catalog, mock_http):
        numeric = [{
            "id": 40123,
            "carrier": "Sendle",
            "name": "Sendle Standard",
            "serviceLevel": "standard",
            "price": 9.5,
            "delivery": {"daysFrom": 2, "daysTo": 3},
        }]
        carrier = InterparcelCarrier(http_client=mock_http(lambda request: _ok(numeric)), api_key="k", base_url=BASE_URL)
        quotes = await carrier.get_quotes(_request(catalog))
        await carrier.close()

        assert quotes[0].service_code == "40123"
        response = QuoteResponse.from_quote(quotes[0])
        assert response.service_code == "40123"
        assert response.price_amount == Decimal("9.50")

    def test_missing_days_to_uses_days_from(self):
        carrier = InterparcelCarrier(api_key="k", base_url=BASE_URL)
        quotes = carrier.parse_services({"services": SERVICES}, [ServiceClass.EXPRESS])

        assert len(quotes) == 1
        assert (quotes[0].eta_min_days, quotes[0].eta_max_days) == (1, 1)

    def test_malformed_services_skipped(self):
        carrier = InterparcelCarrier(api_key="k", base_url=BASE_URL)
        services = SERVICES + [
            {"carrier": "Sendle", "name": "Sendle", "price": "oops", "delivery": {"daysFrom": 2}},
            {"carrier": "Aramex", "name": "Aramex", "price": "7.00"},
            "not-a-dict",
        ]
        quotes = carrier.parse_services({"services": services}, [ServiceClass.REGULAR])

        assert {q.carrier_name for q in quotes} == {"Couriers Please", "Australia Post"}

    def test_all_malformed_is_parse_error(self):
        carrier = InterparcelCarrier(api_key="k", base_url=BASE_URL)
        with pytest.raises(QuoteParseError):
            carrier.parse_services({"services": [{"carrier": "X"}, {"price": 1}]}, [ServiceClass.REGULAR])

    def test_empty_service_list_is_no_quotes(self):
        carrier = InterparcelCarrier(api_key="k", base_url=BASE_URL)
        assert carrier.parse_services({"services": []}, [ServiceClass.REGULAR]) == []

    def test_missing_service_list_is_parse_error(self):
        carrier = InterparcelCarrier(api_key="k", base_url=BASE_URL)
        with pytest.raises(QuoteParseError):
            carrier.parse_services({"status": 0}, [ServiceClass.REGULAR])


class TestErrors:

    @pytest.mark.asyncio
    async def test_nonzero_status_is_rejection(self, catalog, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": 1, "errorCode": "INVALID_POSTCODE", "errorMessage": "Postcode not found"})

        carrier = InterparcelCarrier(http_client=mock_http(handler), api_key="k", base_url=BASE_URL)
        with pytest.raises(QuoteRejectedError) as exc_info:
            await carrier.get_quotes(_request(catalog))
        await carrier.close()

        assert "Postcode not found" in exc_info.value.message
        assert exc_info.value.details["error_code"] == "INVALID_POSTCODE"

    @pytest.mark.asyncio
    async def test_auth_failure_is_rejection(self, catalog, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"errorMessage": "Invalid API key"})

        carrier = InterparcelCarrier(http_client=mock_http(handler), api_key="bad", base_url=BASE_URL)
        with pytest.raises(QuoteRejectedError) as exc_info:
            await carrier.get_quotes(_request(catalog))
        await carrier.close()

        assert exc_info.value.details["status_code"] == 401

    @pytest.mark.asyncio
    async def test_outage_is_unavailable(self, catalog, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        carrier = InterparcelCarrier(http_client=mock_http(handler), api_key="k", base_url=BASE_URL)
        with pytest.raises(CarrierUnavailableError):
            await carrier.get_quotes(_request(catalog))
        await carrier.close()


class TestHelpers:

    @pytest.mark.parametrize("value,expected", [
        ("Express", ServiceClass.EXPRESS),
        ("Overnight Express", ServiceClass.EXPRESS),
        ("standard", ServiceClass.REGULAR),
        (None, ServiceClass.REGULAR),
    ])
    def test_map_service_level(self, value, expected):
        assert map_service_level(value) == expected

    def test_satchel_detection(self):
        assert is_satchel_service("Parcel Post Prepaid Satchel")
        assert is_satchel_service("SATCHEL 3kg")
        assert not is_satchel_service("Couriers Please Road")
        assert not is_satchel_service(None)
