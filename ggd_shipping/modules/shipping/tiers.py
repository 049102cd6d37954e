"""
Box/Satchel Tier Catalog

Australia Post prepaid satchels and cartons we pack garage door parts into.
The catalog is built once per process and handed around as an ordered tuple
of frozen Tier objects, smallest first:

    satchels (small -> extra large), then boxes by volume
    (Bx7, Bx6, Bx1, Bx8, Bx2, Bx3, Bx4, Bx5)

Every tier exists once per service class so the classifier can pick the
matching Australia Post service code directly.

Set SHIPPING_TIER_CATALOG_PATH to a JSON list of tier objects to replace the
built-in table (same field names as Tier.to_dict()).
"""
import json
import logging
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ggd_shipping.core.exceptions import ConfigurationError
from ggd_shipping.modules.shipping.models import ServiceClass, Tier, TierKind

logger = logging.getLogger(__name__)

# Australia Post parcel limits
MAX_PARCEL_WEIGHT_KG = 22.0
MAX_PARCEL_SIDE_CM = 105.0
MAX_PARCEL_GIRTH_CM = 140.0

# Satchel flat-rate weight limit
MAX_SATCHEL_WEIGHT_KG = 5.0

# (code, name, length, width, usable depth, max weight, service code suffix)
# Satchels are flexible bags; depth is how thick an item can be and still seal.
SATCHELS = (
    ("SATCHEL_S", "Small Satchel", 35.5, 22.5, 5.0, 0.5, "SATCHEL_500G"),
    ("SATCHEL_M", "Medium Satchel", 39.0, 27.0, 8.0, 3.0, "SATCHEL_3KG"),
    ("SATCHEL_L", "Large Satchel", 40.5, 31.5, 12.0, MAX_SATCHEL_WEIGHT_KG, "SATCHEL_LARGE"),
    ("SATCHEL_XL", "Extra Large Satchel", 51.0, 44.0, 14.0, MAX_SATCHEL_WEIGHT_KG, "SATCHEL_5KG"),
)

# (code, length, width, height, carton price AUD)
BOXES = (
    ("Bx7", 14.5, 12.7, 1.0, "1.95"),
    ("Bx6", 22.0, 14.5, 3.5, "2.75"),
    ("Bx1", 22.0, 16.0, 7.7, "3.50"),
    ("Bx8", 36.3, 21.2, 6.5, "4.95"),
    ("Bx2", 31.0, 22.5, 10.2, "4.25"),
    ("Bx3", 40.0, 20.0, 18.0, "5.75"),
    ("Bx4", 43.0, 30.5, 14.0, "6.25"),
    ("Bx5", 40.5, 30.0, 25.5, "8.50"),
)

SERVICE_CODE_PREFIX = {
    ServiceClass.REGULAR: "AUS_PARCEL_REGULAR",
    ServiceClass.EXPRESS: "AUS_PARCEL_EXPRESS",
}

REQUIRED_FIELDS = (
    "code", "name", "kind", "max_weight_kg",
    "length_cm", "width_cm", "height_cm", "service_class", "service_code",
)


def default_tiers() -> Tuple[Tier, ...]:
    """Build the built-in catalog for both service classes."""
    tiers: List[Tier] = []
    for service_class in (ServiceClass.REGULAR, ServiceClass.EXPRESS):
        prefix = SERVICE_CODE_PREFIX[service_class]
        for code, name, length, width, depth, max_weight, suffix in SATCHELS:
            tiers.append(Tier(
                code=code,
                name=name,
                kind=TierKind.SATCHEL,
                max_weight_kg=max_weight,
                length_cm=length,
                width_cm=width,
                height_cm=depth,
                service_class=service_class,
                service_code=f"{prefix}_{suffix}",
            ))
        for code, length, width, height, price in BOXES:
            tiers.append(Tier(
                code=code,
                name=f"Australia Post Box {code}",
                kind=TierKind.BOX,
                max_weight_kg=MAX_PARCEL_WEIGHT_KG,
                length_cm=length,
                width_cm=width,
                height_cm=height,
                service_class=service_class,
                service_code=prefix,
                packaging_price=Decimal(price),
            ))
    return tuple(tiers)


def _tier_from_dict(raw: Dict[str, Any], index: int) -> Tier:
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Tier catalog entry {index} must be an object",
            details={"index": index},
        )

    missing = [name for name in REQUIRED_FIELDS if raw.get(name) in (None, "")]
    if missing:
        raise ConfigurationError(
            f"Tier catalog entry {index} is missing {', '.join(missing)}",
            details={"index": index, "missing": missing},
        )

    try:
        tier = Tier(
            code=str(raw["code"]),
            name=str(raw["name"]),
            kind=TierKind(raw["kind"]),
            max_weight_kg=float(raw["max_weight_kg"]),
            length_cm=float(raw["length_cm"]),
            width_cm=float(raw["width_cm"]),
            height_cm=float(raw["height_cm"]),
            service_class=ServiceClass(raw["service_class"]),
            service_code=str(raw["service_code"]),
            packaging_price=Decimal(str(raw.get("packaging_price", "0.00"))),
        )
    except (ValueError, TypeError, InvalidOperation) as e:
        raise ConfigurationError(
            f"Tier catalog entry {index} is invalid: {e}",
            details={"index": index, "code": raw.get("code")},
        )

    if min(tier.max_weight_kg, *tier.dimensions) <= 0:
        raise ConfigurationError(
            f"Tier {tier.code} must have positive weight limit and dimensions",
            details={"index": index, "code": tier.code},
        )
    if tier.packaging_price < 0:
        raise ConfigurationError(
            f"Tier {tier.code} has a negative packaging price",
            details={"index": index, "code": tier.code},
        )
    return tier


def load_tiers(path: str) -> Tuple[Tier, ...]:
    """Load a catalog from a JSON file. Order in the file is the scan order."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read tier catalog {path}: {e}", details={"path": path})
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Tier catalog {path} is not valid JSON: {e}", details={"path": path})

    if not isinstance(data, list) or not data:
        raise ConfigurationError(
            f"Tier catalog {path} must be a non-empty JSON list",
            details={"path": path},
        )

    tiers = tuple(_tier_from_dict(raw, i) for i, raw in enumerate(data))

    seen = set()
    for tier in tiers:
        key = (tier.code, tier.service_class)
        if key in seen:
            raise ConfigurationError(
                f"Duplicate tier {tier.code} for {tier.service_class.value}",
                details={"path": path, "code": tier.code},
            )
        seen.add(key)

    logger.info(f"[TIERS] Loaded {len(tiers)} tiers from {path}")
    return tiers


@lru_cache(maxsize=1)
def get_tier_catalog() -> Tuple[Tier, ...]:
    """Process-wide catalog. Call get_tier_catalog.cache_clear() after changing settings."""
    from ggd_shipping.core.config import settings

    if settings.SHIPPING_TIER_CATALOG_PATH:
        return load_tiers(settings.SHIPPING_TIER_CATALOG_PATH)
    return default_tiers()


def catalog_for(
    service_class: ServiceClass,
    catalog: Optional[Iterable[Tier]] = None,
) -> Tuple[Tier, ...]:
    """Tiers for one service class, catalog order preserved."""
    if catalog is None:
        catalog = get_tier_catalog()
    return tuple(t for t in catalog if t.service_class == service_class)


def find_tier(code: str, service_class: ServiceClass, catalog: Optional[Iterable[Tier]] = None) -> Optional[Tier]:
    for tier in catalog_for(service_class, catalog):
        if tier.code == code:
            return tier
    return None
