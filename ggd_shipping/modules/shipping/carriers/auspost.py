"""
Australia Post Carrier Implementation

Single-carrier rate calculator (PAC API):
    GET /postage/parcel/domestic/calculate.json  -> price for one parcel + service code
    GET /postage/parcel/domestic/service.json    -> services available for a parcel

The calculator prices one parcel per call, so a shipment is quoted parcel by
parcel and the per-parcel prices are summed. Pricing is linear in the number
of identical parcels.
"""
import asyncio
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ggd_shipping.core.exceptions import QuoteParseError, QuoteRejectedError
from ggd_shipping.core.http_client import (
    CircuitOpenError,
    RateLimitExceeded,
    ResilientHTTPClient,
    get_carrier_client,
)
from ggd_shipping.modules.shipping.carriers import register_carrier
from ggd_shipping.modules.shipping.carriers.base import BaseCarrier, CarrierCode, QuoteRequest
from ggd_shipping.modules.shipping.comparator import combine_parcel_quotes
from ggd_shipping.modules.shipping.models import (
    CarrierQuote,
    PackedParcel,
    QuoteFilter,
    ServiceClass,
    to_money,
)
from ggd_shipping.modules.shipping.tiers import (
    MAX_PARCEL_GIRTH_CM,
    MAX_PARCEL_SIDE_CM,
    MAX_PARCEL_WEIGHT_KG,
)

logger = logging.getLogger(__name__)

CALCULATE_PATH = "/postage/parcel/domestic/calculate.json"
SERVICES_PATH = "/postage/parcel/domestic/service.json"

CARRIER_NAME = "Australia Post"

# PAC calls in flight per service class
MAX_CONCURRENT_PARCELS = 8

# "Delivered in 2-3 business days", "Delivered in 4 business days"
ETA_RANGE_RE = re.compile(r"(\d+)\s*(?:-|–|to)\s*(\d+)")
ETA_SINGLE_RE = re.compile(r"(\d+)")


def parse_delivery_time(text: Optional[str]) -> Tuple[int, int]:
    """
    Turn PAC delivery_time text into (min_days, max_days).

    Raises:
        ValueError: text has no recognisable day count
    """
    if not text:
        raise ValueError("empty delivery_time")
    lowered = text.lower()

    match = ETA_RANGE_RE.search(lowered)
    if match:
        low, high = int(match.group(1)), int(match.group(2))
        return min(low, high), max(low, high)

    if "next" in lowered and "day" in lowered:
        return 1, 1
    if "same day" in lowered:
        return 0, 0

    match = ETA_SINGLE_RE.search(lowered)
    if match:
        days = int(match.group(1))
        return days, days

    raise ValueError(f"unrecognised delivery_time {text!r}")


def girth_cm(length: float, width: float, height: float) -> float:
    """Distance around the parcel's two shorter sides."""
    _, mid, short = sorted((length, width, height), reverse=True)
    return 2 * (mid + short)


@register_carrier(CarrierCode.AUSPOST)
class AusPostCarrier(BaseCarrier):
    """Australia Post PAC calculator, priced per parcel by tier service code."""

    def __init__(
        self,
        http_client: Optional[ResilientHTTPClient] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        from ggd_shipping.core.config import settings

        super().__init__(http_client or get_carrier_client())
        self._api_key = api_key if api_key is not None else settings.AUSPOST_API_KEY
        self._base_url = (base_url or settings.AUSPOST_BASE_URL).rstrip("/")

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.AUSPOST

    @property
    def carrier_name(self) -> str:
        return CARRIER_NAME

    def _headers(self) -> Dict[str, str]:
        return {"AUTH-KEY": self._api_key, "Accept": "application/json"}

    def check_parcel_limits(self, parcel: PackedParcel) -> None:
        """Reject parcels Australia Post won't carry, before calling the API."""
        problems = []
        if parcel.weight_kg > MAX_PARCEL_WEIGHT_KG:
            problems.append(f"weight {parcel.weight_kg}kg exceeds {MAX_PARCEL_WEIGHT_KG:.0f}kg")
        longest = max(parcel.length_cm, parcel.width_cm, parcel.height_cm)
        if longest > MAX_PARCEL_SIDE_CM:
            problems.append(f"side {longest}cm exceeds {MAX_PARCEL_SIDE_CM:.0f}cm")
        girth = girth_cm(parcel.length_cm, parcel.width_cm, parcel.height_cm)
        if girth > MAX_PARCEL_GIRTH_CM:
            problems.append(f"girth {girth:.1f}cm exceeds {MAX_PARCEL_GIRTH_CM:.0f}cm")

        if problems:
            raise QuoteRejectedError(
                f"{CARRIER_NAME} cannot carry parcel {parcel.tier.code}: {'; '.join(problems)}",
                carrier=CARRIER_NAME,
            )

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET a PAC endpoint and return its JSON body, mapping failures."""
        url = f"{self._base_url}{path}"
        try:
            response = await self._http.get(url, params=params, headers=self._headers())
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429 or e.response.status_code >= 500:
                raise self._unavailable(e)
            response = e.response
        except (httpx.TimeoutException, httpx.TransportError, CircuitOpenError, RateLimitExceeded) as e:
            raise self._unavailable(e)

        if response.status_code >= 400:
            raise self._rejected(response)

        data = self._json(response)
        if "error" in data:
            raise QuoteRejectedError(self._error_message(data), carrier=CARRIER_NAME)
        return data

    def _error_message(self, data: Dict[str, Any]) -> str:
        error = data.get("error")
        if isinstance(error, dict) and error.get("errorMessage"):
            return f"{CARRIER_NAME}: {error['errorMessage']}"
        return f"{CARRIER_NAME} rejected the request"

    def _rejected(self, response: httpx.Response) -> QuoteRejectedError:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and "error" in data:
            message = self._error_message(data)
        else:
            message = f"{CARRIER_NAME} rejected the request (HTTP {response.status_code})"
        logger.warning(f"[AUSPOST] HTTP {response.status_code}: {message}")
        return QuoteRejectedError(message, carrier=CARRIER_NAME, details={"status_code": response.status_code})

    async def quote_parcel(
        self,
        parcel: PackedParcel,
        origin_postcode: str,
        dest_postcode: str,
        service_class: ServiceClass,
    ) -> CarrierQuote:
        """Price one parcel with its tier's service code."""
        self.check_parcel_limits(parcel)

        params = {
            "from_postcode": origin_postcode,
            "to_postcode": dest_postcode,
            "length": parcel.length_cm,
            "width": parcel.width_cm,
            "height": parcel.height_cm,
            "weight": parcel.weight_kg,
            "service_code": parcel.tier.service_code,
        }
        data = await self._get(CALCULATE_PATH, params)

        result = data.get("postage_result")
        if not isinstance(result, dict):
            raise QuoteParseError(f"{CARRIER_NAME} response has no postage_result", carrier=CARRIER_NAME)

        try:
            price = to_money(result["total_cost"])
        except (KeyError, TypeError, InvalidOperation) as e:
            raise QuoteParseError(f"{CARRIER_NAME} total_cost missing or invalid: {e}", carrier=CARRIER_NAME)
        if price <= 0:
            raise QuoteParseError(f"{CARRIER_NAME} returned non-positive price {price}", carrier=CARRIER_NAME)

        try:
            eta_min, eta_max = parse_delivery_time(result.get("delivery_time"))
        except ValueError as e:
            raise QuoteParseError(f"{CARRIER_NAME} delivery_time: {e}", carrier=CARRIER_NAME)

        return CarrierQuote(
            carrier_name=CARRIER_NAME,
            service_name=str(result.get("service") or parcel.tier.name),
            price_amount=price,
            currency="AUD",
            eta_min_days=eta_min,
            eta_max_days=eta_max,
            is_satchel=parcel.tier.is_satchel,
            service_level=service_class,
            service_code=parcel.tier.service_code,
        )

    async def _quote_parcels(
        self,
        parcels: Tuple[PackedParcel, ...],
        origin: str,
        dest: str,
        service_class: ServiceClass,
    ) -> List[CarrierQuote]:
        """
        Quote every parcel, at most MAX_CONCURRENT_PARCELS at a time. The first
        failure cancels the parcels still waiting or in flight.
        """
        semaphore = asyncio.Semaphore(MAX_CONCURRENT_PARCELS)

        async def bounded(parcel: PackedParcel) -> CarrierQuote:
            async with semaphore:
                return await self.quote_parcel(parcel, origin, dest, service_class)

        tasks = [asyncio.ensure_future(bounded(p)) for p in parcels]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def get_quotes(
        self,
        request: QuoteRequest,
        quote_filter: Optional[QuoteFilter] = None,
    ) -> List[CarrierQuote]:
        origin = self.validate_postcode(request.origin.postcode)
        dest = self.validate_postcode(request.destination.postcode)

        classes = [
            sc for sc in request.service_classes
            if quote_filter is None or quote_filter.allows_service_level(sc)
        ]

        quotes: List[CarrierQuote] = []
        for service_class in classes:
            parcels = request.parcels_for(service_class)
            if not parcels:
                continue
            logger.info(f"[AUSPOST] Quoting {len(parcels)} parcel(s) {origin}->{dest} ({service_class.value})")
            per_parcel = await self._quote_parcels(parcels, origin, dest, service_class)
            quotes.extend(combine_parcel_quotes([[q] for q in per_parcel]))

        logger.info(f"[AUSPOST] Got {len(quotes)} quote(s)")
        return quotes

    async def list_services(
        self,
        weight_kg: float,
        length_cm: float,
        width_cm: float,
        height_cm: float,
        to_postcode: str,
        from_postcode: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Services Australia Post offers for a parcel, as [{code, name, price}]."""
        from ggd_shipping.core.config import settings

        origin = self.validate_postcode(from_postcode or settings.SHIPPING_ORIGIN_POSTCODE)
        dest = self.validate_postcode(to_postcode)

        data = await self._get(SERVICES_PATH, {
            "from_postcode": origin,
            "to_postcode": dest,
            "length": length_cm,
            "width": width_cm,
            "height": height_cm,
            "weight": weight_kg,
        })

        services = data.get("services")
        raw = services.get("service") if isinstance(services, dict) else None
        # PAC returns a bare object instead of a list when there is one service
        if isinstance(raw, dict):
            raw = [raw]
        if not isinstance(raw, list):
            raise QuoteParseError(f"{CARRIER_NAME} service list missing", carrier=CARRIER_NAME)

        result = []
        for entry in raw:
            if not isinstance(entry, dict) or "code" not in entry:
                continue
            try:
                price: Optional[Decimal] = to_money(entry["price"]) if entry.get("price") is not None else None
            except InvalidOperation:
                price = None
            result.append({
                "code": entry["code"],
                "name": entry.get("name", entry["code"]),
                "price": price,
            })
        return result
