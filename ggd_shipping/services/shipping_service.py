"""
Shipping Estimate Service

The one entry point checkout and admin code call:

    service = get_shipping_service()
    request = service.build_request("3000", [ShippableItem(0.3, 15, 8, 4)])
    estimate = await service.estimate(request)

An estimate moves Pending -> Classified -> QuotesRequested and ends in
exactly one of:
    QUOTE_SELECTED            checkout may proceed
    ALL_CARRIERS_UNAVAILABLE  checkout blocked, customer may retry
    OVERSIZED                 checkout blocked, customer must phone the store

Bad input raises ShippingValidationError before any carrier is called.
"""
import asyncio
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ggd_shipping.core.config import Settings, settings as app_settings
from ggd_shipping.core.exceptions import (
    AllCarriersUnavailableError,
    CarrierError,
    CarrierUnavailableError,
    ShippingValidationError,
)
from ggd_shipping.modules.shipping.carriers import CarrierFactory
from ggd_shipping.modules.shipping.carriers.base import BaseCarrier, QuoteRequest
from ggd_shipping.modules.shipping.classifier import OVERSIZED_MESSAGE, classify, expand_units
from ggd_shipping.modules.shipping.comparator import rank_quotes
from ggd_shipping.modules.shipping.models import (
    Address,
    CarrierFailure,
    CarrierQuote,
    CostBreakdown,
    EstimateState,
    PackedParcel,
    QuoteFilter,
    ServiceClass,
    ShipmentRequest,
    ShippableItem,
    ShippingEstimate,
    Tier,
)
from ggd_shipping.modules.shipping.tiers import catalog_for, get_tier_catalog

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_CLASSES = (ServiceClass.REGULAR, ServiceClass.EXPRESS)


class ShippingService:
    """Classifies a shipment, quotes every enabled carrier and picks the cheapest."""

    def __init__(
        self,
        carriers: Optional[Sequence[BaseCarrier]] = None,
        catalog: Optional[Iterable[Tier]] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or app_settings
        self.carriers: List[BaseCarrier] = (
            list(carriers) if carriers is not None else CarrierFactory.get_enabled_carriers()
        )
        self.catalog: Tuple[Tier, ...] = tuple(catalog) if catalog is not None else get_tier_catalog()

    @property
    def origin(self) -> Address:
        return Address(
            postcode=self.settings.SHIPPING_ORIGIN_POSTCODE,
            city=self.settings.SHIPPING_ORIGIN_CITY,
            state=self.settings.SHIPPING_ORIGIN_STATE,
            country=self.settings.SHIPPING_ORIGIN_COUNTRY,
        )

    def build_request(
        self,
        dest_postcode: str,
        items: Iterable[ShippableItem],
        dest_city: str = "",
        dest_state: str = "",
    ) -> ShipmentRequest:
        """Shipment from the store to a customer postcode."""
        return ShipmentRequest(
            origin=self.origin,
            destination=Address(postcode=(dest_postcode or "").strip(), city=dest_city, state=dest_state),
            items=tuple(items),
        )

    async def close(self) -> None:
        for carrier in self.carriers:
            await carrier.close()

    # -------------------------------------------------------------------------
    # Estimate
    # -------------------------------------------------------------------------

    async def estimate(
        self,
        request: ShipmentRequest,
        quote_filter: Optional[QuoteFilter] = None,
    ) -> ShippingEstimate:
        estimate = ShippingEstimate()
        carriers = [c for c in self.carriers if c.serves(quote_filter)]

        self._validate(request, carriers)

        parcels_by_class, oversized_message = self._pack(request.items, quote_filter)
        if oversized_message:
            estimate.state = EstimateState.OVERSIZED
            estimate.message = (
                f"{oversized_message} Call {self.settings.SHIPPING_CONTACT_PHONE}."
            )
            estimate.contact_phone = self.settings.SHIPPING_CONTACT_PHONE
            logger.info(f"[ESTIMATE] Oversized shipment to {request.dest_postcode}")
            return estimate

        estimate.state = EstimateState.CLASSIFIED
        quote_request = QuoteRequest(
            origin=request.origin,
            destination=request.destination,
            parcels_by_class=parcels_by_class,
        )

        estimate.state = EstimateState.QUOTES_REQUESTED
        quotes, failures = await self._fan_out(carriers, quote_request, quote_filter)
        estimate.failures = failures

        ranked = rank_quotes(quotes, quote_filter)
        if not ranked:
            error = AllCarriersUnavailableError(failures=[f.to_dict() for f in failures])
            estimate.state = EstimateState.ALL_CARRIERS_UNAVAILABLE
            estimate.message = error.message
            logger.warning(
                f"[ESTIMATE] No usable quote to {request.dest_postcode} "
                f"({len(carriers)} carrier(s), {len(failures)} failure(s))"
            )
            return estimate

        selected = ranked[0]
        service_level = selected.service_level or next(iter(parcels_by_class))
        parcels = list(parcels_by_class.get(service_level) or next(iter(parcels_by_class.values())))

        estimate.state = EstimateState.QUOTE_SELECTED
        estimate.quote = selected
        estimate.quotes = ranked
        estimate.parcels = parcels
        estimate.breakdown = CostBreakdown.build(
            postage=selected.price_amount,
            packaging=sum((p.tier.packaging_price for p in parcels), Decimal("0.00")),
            gst_rate=self.settings.SHIPPING_GST_RATE,
        )
        logger.info(
            f"[ESTIMATE] {request.origin_postcode}->{request.dest_postcode}: "
            f"{selected.carrier_name} {selected.service_name} ${selected.price_amount} "
            f"(total ${estimate.breakdown.total}, {len(ranked)} option(s))"
        )
        return estimate

    def _validate(self, request: ShipmentRequest, carriers: Sequence[BaseCarrier]) -> None:
        if not request.items:
            raise ShippingValidationError("Shipment must contain at least one item", field="items")
        for item in request.items:
            item.validate()
        if not request.dest_postcode:
            raise ShippingValidationError("Destination postcode is required", field="postcode")
        for carrier in carriers:
            carrier.validate_postcode(request.origin_postcode)
            carrier.validate_postcode(request.dest_postcode)

    def _pack(
        self,
        items: Sequence[ShippableItem],
        quote_filter: Optional[QuoteFilter],
    ) -> Tuple[Dict[ServiceClass, Tuple[PackedParcel, ...]], Optional[str]]:
        """
        Classify every unit for every service class in scope.

        Returns (parcels_by_class, None), or ({}, message) if any unit fits
        no tier.
        """
        wanted = (quote_filter.service_levels if quote_filter and quote_filter.service_levels
                  else DEFAULT_SERVICE_CLASSES)
        classes = [sc for sc in wanted if catalog_for(sc, self.catalog)]
        units = list(expand_units(items))

        parcels_by_class: Dict[ServiceClass, Tuple[PackedParcel, ...]] = {}
        for service_class in classes:
            packed = []
            for unit in units:
                result = classify(unit, self.catalog, service_class)
                if result.oversized:
                    return {}, result.message
                packed.append(PackedParcel.pack(unit, result.tier))
            parcels_by_class[service_class] = tuple(packed)

        if not parcels_by_class:
            return {}, OVERSIZED_MESSAGE
        return parcels_by_class, None

    async def _quote_carrier(
        self,
        carrier: BaseCarrier,
        quote_request: QuoteRequest,
        quote_filter: Optional[QuoteFilter],
    ) -> List[CarrierQuote]:
        deadline = self.settings.SHIPPING_ESTIMATE_DEADLINE_SECONDS
        try:
            return await asyncio.wait_for(carrier.get_quotes(quote_request, quote_filter), timeout=deadline)
        except asyncio.TimeoutError:
            raise CarrierUnavailableError(
                f"{carrier.carrier_name} did not answer within {deadline:.0f}s",
                carrier=carrier.carrier_name,
            )

    async def _fan_out(
        self,
        carriers: Sequence[BaseCarrier],
        quote_request: QuoteRequest,
        quote_filter: Optional[QuoteFilter],
    ) -> Tuple[List[CarrierQuote], List[CarrierFailure]]:
        """Query carriers concurrently. One carrier failing never sinks the others."""
        if not carriers:
            logger.warning("[ESTIMATE] No carriers enabled for rate lookup")
            return [], []

        results = await asyncio.gather(
            *(self._quote_carrier(c, quote_request, quote_filter) for c in carriers),
            return_exceptions=True,
        )

        quotes: List[CarrierQuote] = []
        failures: List[CarrierFailure] = []
        for carrier, result in zip(carriers, results):
            if isinstance(result, CarrierError):
                logger.warning(f"[ESTIMATE] {carrier.carrier_name}: {result.code} {result.message}")
                failures.append(CarrierFailure(
                    carrier_name=carrier.carrier_name,
                    error_code=result.code,
                    message=result.message,
                    retryable=result.retryable,
                ))
            elif isinstance(result, asyncio.CancelledError):
                raise result
            elif isinstance(result, Exception):
                logger.error(
                    f"[ESTIMATE] Error getting quotes from {carrier.carrier_name}: {result!r}",
                    exc_info=result,
                )
                failures.append(CarrierFailure(
                    carrier_name=carrier.carrier_name,
                    error_code="CARRIER_ERROR",
                    message=f"{carrier.carrier_name} failed unexpectedly",
                    retryable=False,
                ))
            else:
                logger.info(f"[ESTIMATE] Got {len(result)} quote(s) from {carrier.carrier_name}")
                quotes.extend(result)
        return quotes, failures


_shipping_service: Optional[ShippingService] = None


def get_shipping_service() -> ShippingService:
    """FastAPI dependency. One service (and one set of carrier clients) per process."""
    global _shipping_service
    if _shipping_service is None:
        _shipping_service = ShippingService()
    return _shipping_service


async def close_shipping_service() -> None:
    global _shipping_service
    if _shipping_service is not None:
        await _shipping_service.close()
        _shipping_service = None
