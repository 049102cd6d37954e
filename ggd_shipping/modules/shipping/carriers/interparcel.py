"""
Interparcel Carrier Implementation

Multi-carrier aggregator:
    POST /quote  {collection, delivery, parcels[], filter?}

One call returns competing services from many couriers (Australia Post,
Couriers Please, Sendle, ...). All parcels of a shipment go in a single
request. Interparcel prices the consignment as a whole, so its total for N
parcels is not guaranteed to be N times the single-parcel price.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

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
from ggd_shipping.modules.shipping.models import (
    CarrierQuote,
    PackedParcel,
    QuoteFilter,
    ServiceClass,
    to_money,
)

logger = logging.getLogger(__name__)

QUOTE_PATH = "/quote"

CARRIER_NAME = "Interparcel"

# Our service class -> Interparcel serviceLevel
SERVICE_LEVELS = {
    ServiceClass.REGULAR: "standard",
    ServiceClass.EXPRESS: "express",
}

SATCHEL_MARKERS = ("satchel", "prepaid")


def map_service_level(value: Optional[str]) -> ServiceClass:
    if value and "express" in value.lower():
        return ServiceClass.EXPRESS
    return ServiceClass.REGULAR


def is_satchel_service(name: str) -> bool:
    lowered = (name or "").lower()
    return any(marker in lowered for marker in SATCHEL_MARKERS)


def _parcel_payload(parcels: Sequence[PackedParcel]) -> Tuple[Tuple[float, float, float, float], ...]:
    return tuple((p.weight_kg, p.length_cm, p.width_cm, p.height_cm) for p in parcels)


@register_carrier(CarrierCode.INTERPARCEL)
class InterparcelCarrier(BaseCarrier):
    """Interparcel quote API. Quotes carry the underlying courier's name."""

    def __init__(
        self,
        http_client: Optional[ResilientHTTPClient] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
    ):
        from ggd_shipping.core.config import settings

        super().__init__(http_client or get_carrier_client())
        self._api_key = api_key if api_key is not None else settings.INTERPARCEL_API_KEY
        self._base_url = (base_url or settings.INTERPARCEL_BASE_URL).rstrip("/")
        self._api_version = api_version or settings.INTERPARCEL_API_VERSION

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.INTERPARCEL

    @property
    def carrier_name(self) -> str:
        return CARRIER_NAME

    def serves(self, quote_filter: Optional[QuoteFilter] = None) -> bool:
        # Carrier names are forwarded in the request filter instead
        return True

    def forwarded_couriers(self, quote_filter: Optional[QuoteFilter] = None) -> List[str]:
        """
        Courier names for the request filter. Naming Interparcel itself asks for
        every courier it offers, so no courier filter is sent.
        """
        if not quote_filter or not quote_filter.carriers:
            return []
        if any(c.strip().lower() == CARRIER_NAME.lower() for c in quote_filter.carriers):
            return []
        return list(quote_filter.carriers)

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Interparcel-Auth": self._api_key,
            "X-Interparcel-API-Version": self._api_version,
        }

    def build_body(
        self,
        request: QuoteRequest,
        parcels: Sequence[PackedParcel],
        service_classes: Sequence[ServiceClass],
        quote_filter: Optional[QuoteFilter] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "collection": request.origin.to_dict(),
            "delivery": request.destination.to_dict(),
            "parcels": [
                {
                    "weight": p.weight_kg,
                    "length": p.length_cm,
                    "width": p.width_cm,
                    "height": p.height_cm,
                }
                for p in parcels
            ],
        }

        api_filter: Dict[str, List[str]] = {}
        couriers = self.forwarded_couriers(quote_filter)
        if couriers:
            api_filter["carriers"] = couriers
        if quote_filter and quote_filter.service_levels:
            api_filter["serviceLevel"] = [SERVICE_LEVELS[sc] for sc in service_classes]
        if api_filter:
            body["filter"] = api_filter
        return body

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self._base_url}{QUOTE_PATH}"
        try:
            response = await self._http.post(url, json=body, headers=self._headers())
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429 or e.response.status_code >= 500:
                raise self._unavailable(e)
            response = e.response
        except (httpx.TimeoutException, httpx.TransportError, CircuitOpenError, RateLimitExceeded) as e:
            raise self._unavailable(e)

        if response.status_code >= 400:
            try:
                data = response.json()
            except ValueError:
                data = {}
            message = data.get("errorMessage") if isinstance(data, dict) else None
            logger.warning(f"[INTERPARCEL] HTTP {response.status_code}: {message or 'no error body'}")
            raise QuoteRejectedError(
                f"{CARRIER_NAME}: {message}" if message else
                f"{CARRIER_NAME} rejected the request (HTTP {response.status_code})",
                carrier=CARRIER_NAME,
                details={"status_code": response.status_code},
            )

        data = self._json(response)
        status = data.get("status")
        if status != 0:
            message = data.get("errorMessage") or f"status {status}"
            logger.warning(f"[INTERPARCEL] Quote refused: {message} (code={data.get('errorCode')})")
            raise QuoteRejectedError(
                f"{CARRIER_NAME}: {message}",
                carrier=CARRIER_NAME,
                details={"error_code": data.get("errorCode"), "status": status},
            )
        return data

    def parse_services(
        self,
        data: Dict[str, Any],
        wanted: Sequence[ServiceClass],
    ) -> List[CarrierQuote]:
        services = data.get("services")
        if not isinstance(services, list):
            raise QuoteParseError(f"{CARRIER_NAME} response has no services list", carrier=CARRIER_NAME)

        quotes = []
        skipped = 0
        for service in services:
            try:
                delivery = service.get("delivery") or {}
                eta_min = int(delivery["daysFrom"])
                eta_max = int(delivery.get("daysTo", eta_min))
                price = to_money(service["price"])
                name = str(service["name"])
                courier = str(service["carrier"])
            except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
                skipped += 1
                logger.warning(f"[INTERPARCEL] Skipping malformed service: {e!r}")
                continue

            if price <= 0:
                skipped += 1
                continue

            service_level = map_service_level(service.get("serviceLevel"))
            if service_level not in wanted:
                continue

            # Interparcel ids may be numeric
            raw_code = service.get("id") or service.get("service")
            quotes.append(CarrierQuote(
                carrier_name=courier,
                service_name=name,
                price_amount=price,
                currency=str(service.get("currency") or "AUD"),
                eta_min_days=min(eta_min, eta_max),
                eta_max_days=max(eta_min, eta_max),
                is_satchel=is_satchel_service(name),
                service_level=service_level,
                service_code=str(raw_code) if raw_code is not None else None,
                via=CARRIER_NAME,
            ))

        if services and skipped == len(services):
            raise QuoteParseError(
                f"{CARRIER_NAME} returned {skipped} service(s), none usable",
                carrier=CARRIER_NAME,
            )
        return quotes

    async def get_quotes(
        self,
        request: QuoteRequest,
        quote_filter: Optional[QuoteFilter] = None,
    ) -> List[CarrierQuote]:
        self.validate_postcode(request.origin.postcode)
        self.validate_postcode(request.destination.postcode)

        classes = [
            sc for sc in request.service_classes
            if request.parcels_for(sc)
            and (quote_filter is None or quote_filter.allows_service_level(sc))
        ]

        # Classes packed identically share one request
        batches: Dict[Tuple, List[ServiceClass]] = {}
        for service_class in classes:
            key = _parcel_payload(request.parcels_for(service_class))
            batches.setdefault(key, []).append(service_class)

        quotes: List[CarrierQuote] = []
        for service_classes in batches.values():
            parcels = request.parcels_for(service_classes[0])
            body = self.build_body(request, parcels, service_classes, quote_filter)
            logger.info(
                f"[INTERPARCEL] Quoting {len(parcels)} parcel(s) "
                f"{request.origin.postcode}->{request.destination.postcode} "
                f"({', '.join(sc.value for sc in service_classes)})"
            )
            data = await self._post(body)
            quotes.extend(self.parse_services(data, service_classes))

        logger.info(f"[INTERPARCEL] Got {len(quotes)} quote(s)")
        return quotes
