"""
Shipping Schemas

Pydantic models for the shipping estimate API. Money fields are Decimals and
serialize as strings ("12.50").
"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ggd_shipping.modules.shipping.models import (
    CarrierFailure,
    CarrierQuote,
    CostBreakdown,
    PackedParcel,
    QuoteFilter,
    ServiceClass,
    ShippableItem,
    Tier,
)


# ==================== Item Schemas ====================


class ItemInput(BaseModel):
    """One cart line. Dimensions in cm, weight in kg."""
    weight_kg: float = Field(..., gt=0, le=1000)
    length_cm: float = Field(..., gt=0, le=1000)
    width_cm: float = Field(..., gt=0, le=1000)
    height_cm: float = Field(..., gt=0, le=1000)
    quantity: int = Field(1, ge=1, le=100)

    def to_item(self) -> ShippableItem:
        return ShippableItem(
            weight_kg=self.weight_kg,
            length_cm=self.length_cm,
            width_cm=self.width_cm,
            height_cm=self.height_cm,
            quantity=self.quantity,
        )


class DestinationInput(BaseModel):
    postcode: str = Field(..., min_length=1, max_length=10)
    city: str = Field("", max_length=100)
    state: str = Field("", max_length=10)

    @field_validator("postcode", "state")
    @classmethod
    def strip_upper(cls, v):
        return v.strip().upper()


class FilterInput(BaseModel):
    """Restrict quotes to carriers (by name) and/or service levels."""
    carriers: List[str] = Field(default_factory=list)
    service_levels: List[ServiceClass] = Field(default_factory=list)

    def to_filter(self) -> QuoteFilter:
        return QuoteFilter(
            carriers=tuple(c for c in self.carriers if c.strip()),
            service_levels=tuple(self.service_levels),
        )


class EstimateRequest(BaseModel):
    destination: DestinationInput
    items: List[ItemInput] = Field(..., min_length=1, max_length=50)
    filter: Optional[FilterInput] = None


class ClassifyRequest(BaseModel):
    item: ItemInput
    service_class: ServiceClass = ServiceClass.REGULAR


class DimensionCheckRequest(BaseModel):
    """Product fields as the admin editor sends them; any may be blank."""
    weight: Optional[float] = None
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


# ==================== Response Schemas ====================


class TierResponse(BaseModel):
    code: str
    name: str
    kind: str
    max_weight_kg: float
    length_cm: float
    width_cm: float
    height_cm: float
    service_class: ServiceClass
    service_code: str
    packaging_price: Decimal

    @classmethod
    def from_tier(cls, tier: Tier) -> "TierResponse":
        return cls(**tier.to_dict())


class QuoteResponse(BaseModel):
    carrier_name: str
    service_name: str
    price_amount: Decimal
    currency: str
    eta_min_days: int
    eta_max_days: int
    is_satchel: bool
    service_level: Optional[ServiceClass] = None
    service_code: Optional[str] = None
    via: Optional[str] = None

    @classmethod
    def from_quote(cls, quote: CarrierQuote) -> "QuoteResponse":
        return cls(**quote.to_dict())


class BreakdownResponse(BaseModel):
    postage: Decimal
    packaging: Decimal
    gst: Decimal
    total: Decimal

    @classmethod
    def from_breakdown(cls, breakdown: CostBreakdown) -> "BreakdownResponse":
        return cls(**breakdown.to_dict())


class ParcelResponse(BaseModel):
    weight_kg: float
    length_cm: float
    width_cm: float
    height_cm: float
    tier_code: str

    @classmethod
    def from_parcel(cls, parcel: PackedParcel) -> "ParcelResponse":
        return cls(**parcel.to_dict())


class FailureResponse(BaseModel):
    carrier_name: str
    error_code: str
    message: str
    retryable: bool

    @classmethod
    def from_failure(cls, failure: CarrierFailure) -> "FailureResponse":
        return cls(**failure.to_dict())


class EstimateResponse(BaseModel):
    """Selected quote, or an oversized notice. Unavailable is a 503, not this."""
    status: str
    checkout_allowed: bool
    quote: Optional[QuoteResponse] = None
    breakdown: Optional[BreakdownResponse] = None
    alternatives: List[QuoteResponse] = []
    parcels: List[ParcelResponse] = []
    failures: List[FailureResponse] = []
    message: Optional[str] = None
    contact_phone: Optional[str] = None


class ClassifyResponse(BaseModel):
    oversized: bool
    tier: Optional[TierResponse] = None
    message: Optional[str] = None


class DimensionCheckResponse(BaseModel):
    is_valid: bool
    missing_fields: List[str] = []


class ServiceOption(BaseModel):
    code: str
    name: str
    price: Optional[Decimal] = None


class ServiceListResponse(BaseModel):
    services: List[ServiceOption]
    to_postcode: str
