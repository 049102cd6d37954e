"""
Shipping Module

- Dimensional classifier over an immutable box/satchel catalog
- BaseCarrier interface for all carrier adapters
- CarrierFactory for the enabled carriers
- Quote comparator (filter, then rank)
"""
from ggd_shipping.modules.shipping.carriers import CarrierFactory
from ggd_shipping.modules.shipping.carriers.base import BaseCarrier

__all__ = [
    "CarrierFactory",
    "BaseCarrier",
]
