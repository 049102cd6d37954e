"""
Carrier registry

Adapters register themselves with @register_carrier. CarrierFactory hands
the shipping service one instance per carrier that is switched on in
settings and has an API key.
"""
from typing import Dict, List, Optional, Type
import logging

from ggd_shipping.modules.shipping.carriers.base import BaseCarrier, CarrierCode

logger = logging.getLogger(__name__)

_CARRIER_REGISTRY: Dict[CarrierCode, Type[BaseCarrier]] = {}


def register_carrier(carrier_code: CarrierCode):
    """
    Class decorator adding an adapter to the registry.

        @register_carrier(CarrierCode.AUSPOST)
        class AusPostCarrier(BaseCarrier):
            ...
    """
    def decorator(cls: Type[BaseCarrier]):
        _CARRIER_REGISTRY[carrier_code] = cls
        logger.debug(f"Carrier {carrier_code.value} -> {cls.__name__}")
        return cls
    return decorator


class CarrierFactory:
    """Builds adapters for the carriers enabled in settings."""

    @classmethod
    def is_enabled(cls, carrier_code: CarrierCode) -> bool:
        from ggd_shipping.core.config import settings

        if carrier_code == CarrierCode.AUSPOST:
            return settings.SHIPPING_AUSPOST_ENABLED and bool(settings.AUSPOST_API_KEY)
        if carrier_code == CarrierCode.INTERPARCEL:
            return settings.SHIPPING_INTERPARCEL_ENABLED and bool(settings.INTERPARCEL_API_KEY)
        return False

    @classmethod
    def get_carrier(cls, carrier_code: CarrierCode) -> Optional[BaseCarrier]:
        """New adapter instance, or None if the carrier is off or unregistered."""
        if not cls.is_enabled(carrier_code):
            logger.debug(f"Carrier {carrier_code.value} is switched off or has no API key")
            return None

        carrier_cls = _CARRIER_REGISTRY.get(carrier_code)
        if carrier_cls is None:
            logger.warning(f"Carrier {carrier_code.value} is enabled but has no adapter")
            return None
        return carrier_cls()

    @classmethod
    def get_enabled_carriers(cls) -> List[BaseCarrier]:
        """One adapter per enabled carrier, in registration order."""
        return [
            carrier for carrier in (cls.get_carrier(code) for code in _CARRIER_REGISTRY)
            if carrier is not None
        ]

    @classmethod
    def get_registered_carriers(cls) -> List[CarrierCode]:
        return list(_CARRIER_REGISTRY)


# Adapters import register_carrier from this module, so they load last
from ggd_shipping.modules.shipping.carriers.auspost import AusPostCarrier  # noqa: E402, F401
from ggd_shipping.modules.shipping.carriers.interparcel import InterparcelCarrier  # noqa: E402, F401
