"""
Shipping API Routes

Provides endpoints for:
- Shipping estimates (checkout)
- Tier catalog and single-item classification (admin product editor)
- Dimension completeness check (admin product editor)
- Australia Post service listing (admin)
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from ggd_shipping.core.exceptions import CarrierError, ShippingValidationError
from ggd_shipping.core.rate_limit import get_estimate_limit
from ggd_shipping.modules.shipping.carriers.auspost import AusPostCarrier
from ggd_shipping.modules.shipping.classifier import classify, missing_dimension_fields
from ggd_shipping.modules.shipping.models import EstimateState, ServiceClass
from ggd_shipping.modules.shipping.tiers import catalog_for
from ggd_shipping.schemas.shipping import (
    BreakdownResponse,
    ClassifyRequest,
    ClassifyResponse,
    DimensionCheckRequest,
    DimensionCheckResponse,
    EstimateRequest,
    EstimateResponse,
    FailureResponse,
    ParcelResponse,
    QuoteResponse,
    ServiceListResponse,
    ServiceOption,
    TierResponse,
)
from ggd_shipping.services.shipping_service import ShippingService, get_shipping_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping", tags=["shipping"])


@router.post("/estimate", response_model=EstimateResponse)
@get_estimate_limit()
async def estimate_shipping(
    request: Request,
    body: EstimateRequest,
    shipping_service: ShippingService = Depends(get_shipping_service),
):
    """
    Quote a cart for a destination postcode.

    200 quote_selected: cheapest quote, cost breakdown and alternatives
    200 oversized: manual quote required, includes the store phone number
    503: every carrier failed; safe to retry
    """
    shipment = shipping_service.build_request(
        body.destination.postcode,
        [item.to_item() for item in body.items],
        dest_city=body.destination.city,
        dest_state=body.destination.state,
    )
    quote_filter = body.filter.to_filter() if body.filter else None

    try:
        estimate = await shipping_service.estimate(shipment, quote_filter)
    except ShippingValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    if estimate.state == EstimateState.ALL_CARRIERS_UNAVAILABLE:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "code": "ALL_CARRIERS_UNAVAILABLE",
                "message": estimate.message,
                "retryable": True,
                "failures": [f.to_dict() for f in estimate.failures],
            },
        )

    return EstimateResponse(
        status=estimate.state.value,
        checkout_allowed=estimate.checkout_allowed,
        quote=QuoteResponse.from_quote(estimate.quote) if estimate.quote else None,
        breakdown=BreakdownResponse.from_breakdown(estimate.breakdown) if estimate.breakdown else None,
        alternatives=[QuoteResponse.from_quote(q) for q in estimate.quotes[1:]],
        parcels=[ParcelResponse.from_parcel(p) for p in estimate.parcels],
        failures=[FailureResponse.from_failure(f) for f in estimate.failures],
        message=estimate.message,
        contact_phone=estimate.contact_phone,
    )


@router.get("/tiers", response_model=List[TierResponse])
async def list_tiers(
    service_class: Optional[ServiceClass] = Query(None),
    shipping_service: ShippingService = Depends(get_shipping_service),
):
    """Packaging catalog in scan order, optionally for one service class."""
    if service_class:
        tiers = catalog_for(service_class, shipping_service.catalog)
    else:
        tiers = shipping_service.catalog
    return [TierResponse.from_tier(t) for t in tiers]


@router.post("/classify", response_model=ClassifyResponse)
async def classify_item(
    body: ClassifyRequest,
    shipping_service: ShippingService = Depends(get_shipping_service),
):
    """Which tier a single unit of a product ships in."""
    try:
        result = classify(body.item.to_item(), shipping_service.catalog, body.service_class)
    except ShippingValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    return ClassifyResponse(
        oversized=result.oversized,
        tier=TierResponse.from_tier(result.tier) if result.tier else None,
        message=result.message,
    )


@router.post("/dimensions/check", response_model=DimensionCheckResponse)
async def check_dimensions(body: DimensionCheckRequest):
    """Products missing any of these are saved as drafts."""
    missing = missing_dimension_fields(body.model_dump())
    return DimensionCheckResponse(is_valid=not missing, missing_fields=missing)


@router.get("/services", response_model=ServiceListResponse)
async def list_auspost_services(
    to_postcode: str = Query(..., min_length=4, max_length=4),
    weight_kg: float = Query(..., gt=0),
    length_cm: float = Query(..., gt=0),
    width_cm: float = Query(..., gt=0),
    height_cm: float = Query(..., gt=0),
    shipping_service: ShippingService = Depends(get_shipping_service),
):
    """Australia Post services available for a parcel."""
    carrier = next((c for c in shipping_service.carriers if isinstance(c, AusPostCarrier)), None)
    if carrier is None:
        raise HTTPException(status_code=503, detail="Australia Post is not enabled")

    try:
        services = await carrier.list_services(weight_kg, length_cm, width_cm, height_cm, to_postcode)
    except ShippingValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except CarrierError as e:
        logger.warning(f"[AUSPOST] Service listing failed: {e.message}")
        raise HTTPException(status_code=502, detail=e.message)

    return ServiceListResponse(
        services=[ServiceOption(**s) for s in services],
        to_postcode=to_postcode,
    )
