"""
Shipping data model

Carrier-agnostic dataclasses shared by the classifier, the carrier
adapters, the comparator and the shipping service. Everything here is
immutable once built; a fresh ShipmentRequest is constructed per estimate.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ggd_shipping.core.exceptions import ShippingValidationError

CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce a carrier price (str, float, int, Decimal) to a 2dp Decimal."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class ServiceClass(str, Enum):
    REGULAR = "regular"
    EXPRESS = "express"


class TierKind(str, Enum):
    SATCHEL = "satchel"
    BOX = "box"


class EstimateState(str, Enum):
    PENDING = "pending"
    CLASSIFIED = "classified"
    QUOTES_REQUESTED = "quotes_requested"
    QUOTE_SELECTED = "quote_selected"
    ALL_CARRIERS_UNAVAILABLE = "all_carriers_unavailable"
    OVERSIZED = "oversized"

    @property
    def is_terminal(self) -> bool:
        return self in (
            EstimateState.QUOTE_SELECTED,
            EstimateState.ALL_CARRIERS_UNAVAILABLE,
            EstimateState.OVERSIZED,
        )


@dataclass(frozen=True)
class ShippableItem:
    """One catalog product line as it goes into a quote request."""
    weight_kg: float
    length_cm: float
    width_cm: float
    height_cm: float
    quantity: int = 1

    def validate(self) -> None:
        """Reject zero/negative measurements before classification."""
        for name in ("weight_kg", "length_cm", "width_cm", "height_cm"):
            value = getattr(self, name)
            if value is None or value <= 0:
                raise ShippingValidationError(
                    f"{name} must be greater than zero (got {value})",
                    field=name,
                )
        if self.quantity is None or self.quantity < 1:
            raise ShippingValidationError(
                f"quantity must be at least 1 (got {self.quantity})",
                field="quantity",
            )

    @property
    def dimensions(self) -> Tuple[float, float, float]:
        return (self.length_cm, self.width_cm, self.height_cm)


@dataclass(frozen=True)
class Tier:
    """A box or satchel from the read-only packaging catalog."""
    code: str
    name: str
    kind: TierKind
    max_weight_kg: float
    length_cm: float
    width_cm: float
    height_cm: float
    service_class: ServiceClass
    service_code: str
    packaging_price: Decimal = Decimal("0.00")

    @property
    def dimensions(self) -> Tuple[float, float, float]:
        return (self.length_cm, self.width_cm, self.height_cm)

    @property
    def volume_cm3(self) -> float:
        return self.length_cm * self.width_cm * self.height_cm

    @property
    def is_satchel(self) -> bool:
        return self.kind == TierKind.SATCHEL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "kind": self.kind.value,
            "max_weight_kg": self.max_weight_kg,
            "length_cm": self.length_cm,
            "width_cm": self.width_cm,
            "height_cm": self.height_cm,
            "service_class": self.service_class.value,
            "service_code": self.service_code,
            "packaging_price": str(self.packaging_price),
        }


@dataclass(frozen=True)
class Address:
    """Origin or destination. Carrier A only needs the postcode."""
    postcode: str
    city: str = ""
    state: str = ""
    country: str = "AU"

    def to_dict(self) -> Dict[str, str]:
        return {
            "city": self.city,
            "state": self.state,
            "postcode": self.postcode,
            "country": self.country,
        }


@dataclass(frozen=True)
class ShipmentRequest:
    origin: Address
    destination: Address
    items: Tuple[ShippableItem, ...]

    @property
    def origin_postcode(self) -> str:
        return self.origin.postcode

    @property
    def dest_postcode(self) -> str:
        return self.destination.postcode


@dataclass(frozen=True)
class QuoteFilter:
    """Optional restriction on carriers and/or service levels."""
    carriers: Tuple[str, ...] = ()
    service_levels: Tuple[ServiceClass, ...] = ()

    def allows_carrier(self, carrier_name: str, via: Optional[str] = None) -> bool:
        """Naming either the courier or the aggregator it was booked through matches."""
        if not self.carriers:
            return True
        wanted = {c.strip().lower() for c in self.carriers}
        return carrier_name.strip().lower() in wanted or bool(via and via.strip().lower() in wanted)

    def allows_service_level(self, service_level: Optional[ServiceClass]) -> bool:
        if not self.service_levels:
            return True
        return service_level in self.service_levels


@dataclass(frozen=True)
class CarrierQuote:
    """A carrier's price/ETA offer, normalized across carriers."""
    carrier_name: str
    service_name: str
    price_amount: Decimal
    currency: str
    eta_min_days: int
    eta_max_days: int
    is_satchel: bool = False
    service_level: Optional[ServiceClass] = None
    service_code: Optional[str] = None
    via: Optional[str] = None  # aggregator the quote came through

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier_name": self.carrier_name,
            "service_name": self.service_name,
            "price_amount": str(self.price_amount),
            "currency": self.currency,
            "eta_min_days": self.eta_min_days,
            "eta_max_days": self.eta_max_days,
            "is_satchel": self.is_satchel,
            "service_level": self.service_level.value if self.service_level else None,
            "service_code": self.service_code,
            "via": self.via,
        }


@dataclass(frozen=True)
class PackedParcel:
    """One unit packed into its tier. Carriers are quoted the tier's outer size."""
    weight_kg: float
    length_cm: float
    width_cm: float
    height_cm: float
    tier: Tier

    @classmethod
    def pack(cls, item: ShippableItem, tier: Tier) -> "PackedParcel":
        return cls(
            weight_kg=item.weight_kg,
            length_cm=tier.length_cm,
            width_cm=tier.width_cm,
            height_cm=tier.height_cm,
            tier=tier,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weight_kg": self.weight_kg,
            "length_cm": self.length_cm,
            "width_cm": self.width_cm,
            "height_cm": self.height_cm,
            "tier_code": self.tier.code,
        }


@dataclass(frozen=True)
class Classification:
    """Classifier outcome for one item and service class."""
    tier: Optional[Tier]
    oversized: bool = False
    message: Optional[str] = None


@dataclass(frozen=True)
class CostBreakdown:
    postage: Decimal
    packaging: Decimal
    gst: Decimal
    total: Decimal

    @classmethod
    def build(cls, postage: Decimal, packaging: Decimal, gst_rate: Decimal) -> "CostBreakdown":
        postage = to_money(postage)
        packaging = to_money(packaging)
        gst = to_money((postage + packaging) * gst_rate)
        return cls(postage=postage, packaging=packaging, gst=gst, total=postage + packaging + gst)

    def to_dict(self) -> Dict[str, str]:
        return {
            "postage": str(self.postage),
            "packaging": str(self.packaging),
            "gst": str(self.gst),
            "total": str(self.total),
        }


@dataclass(frozen=True)
class CarrierFailure:
    """Why a carrier produced no quote for an estimate."""
    carrier_name: str
    error_code: str
    message: str
    retryable: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier_name": self.carrier_name,
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
        }


@dataclass
class ShippingEstimate:
    """Result of one shipping-estimate request."""
    state: EstimateState = EstimateState.PENDING
    quote: Optional[CarrierQuote] = None
    breakdown: Optional[CostBreakdown] = None
    quotes: List[CarrierQuote] = field(default_factory=list)
    parcels: List[PackedParcel] = field(default_factory=list)
    failures: List[CarrierFailure] = field(default_factory=list)
    message: Optional[str] = None
    contact_phone: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.state == EstimateState.ALL_CARRIERS_UNAVAILABLE

    @property
    def checkout_allowed(self) -> bool:
        return self.state == EstimateState.QUOTE_SELECTED and self.quote is not None
