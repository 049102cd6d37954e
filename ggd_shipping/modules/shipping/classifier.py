"""
Dimensional Classifier

Picks the smallest satchel or box an item fits in. Pure lookup, no I/O.

Both the item's and the tier's dimensions are sorted longest-first before
comparing, so a 4x15x8 item and a 15x8x4 item land in the same tier.
"""
import logging
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ggd_shipping.modules.shipping.models import (
    Classification,
    ServiceClass,
    ShippableItem,
    Tier,
)

logger = logging.getLogger(__name__)

OVERSIZED_MESSAGE = (
    "Item exceeds standard shipping dimensions; please contact us for a custom quote."
)

DIMENSION_FIELDS = ("weight", "length", "width", "height")


def _sorted_dims(dims: Sequence[float]) -> Tuple[float, ...]:
    return tuple(sorted(dims, reverse=True))


def fits(item: ShippableItem, tier: Tier) -> bool:
    """True if a single unit of item fits in tier by weight and every axis."""
    if item.weight_kg > tier.max_weight_kg:
        return False
    item_dims = _sorted_dims(item.dimensions)
    tier_dims = _sorted_dims(tier.dimensions)
    return all(i <= t for i, t in zip(item_dims, tier_dims))


def classify(
    item: ShippableItem,
    catalog: Iterable[Tier],
    service_class: ServiceClass = ServiceClass.REGULAR,
) -> Classification:
    """
    Return the first tier in catalog order that holds the item.

    Raises:
        ShippingValidationError: zero or negative weight/dimensions/quantity
    """
    item.validate()

    for tier in catalog:
        if tier.service_class != service_class:
            continue
        if fits(item, tier):
            return Classification(tier=tier)

    logger.info(
        f"[CLASSIFY] Oversized for {service_class.value}: "
        f"{item.weight_kg}kg {item.length_cm}x{item.width_cm}x{item.height_cm}cm"
    )
    return Classification(tier=None, oversized=True, message=OVERSIZED_MESSAGE)


def expand_units(items: Iterable[ShippableItem]) -> Iterator[ShippableItem]:
    """Yield one single-quantity item per physical unit."""
    for item in items:
        unit = item if item.quantity == 1 else ShippableItem(
            weight_kg=item.weight_kg,
            length_cm=item.length_cm,
            width_cm=item.width_cm,
            height_cm=item.height_cm,
        )
        for _ in range(item.quantity):
            yield unit


def _positive(value: Any) -> bool:
    if value is None or value == "":
        return False
    try:
        return float(value) > 0
    except (TypeError, ValueError):
        return False


def missing_dimension_fields(product: Mapping[str, Any]) -> List[str]:
    """
    Names of shipping fields a product is missing.

    Products without all four are kept as drafts in the admin until
    someone measures them.
    """
    return [name for name in DIMENSION_FIELDS if not _positive(product.get(name))]


def largest_tier(catalog: Iterable[Tier], service_class: Optional[ServiceClass] = None) -> Optional[Tier]:
    candidates = [t for t in catalog if service_class is None or t.service_class == service_class]
    if not candidates:
        return None
    return max(candidates, key=lambda t: t.volume_cm3)
