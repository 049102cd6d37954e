"""
Base Carrier Interface

All carrier adapters implement this interface. API-shape differences live
only in the adapters; everything they return is a normalized CarrierQuote.

Each carrier provides its own:
  - Postcode validation
  - Quote request/response mapping
  - Error mapping onto CarrierUnavailableError / QuoteRejectedError / QuoteParseError
"""
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import httpx

from ggd_shipping.core.exceptions import (
    CarrierUnavailableError,
    QuoteParseError,
    ShippingValidationError,
)
from ggd_shipping.core.http_client import CircuitOpenError, RateLimitExceeded, ResilientHTTPClient
from ggd_shipping.modules.shipping.models import (
    Address,
    CarrierQuote,
    PackedParcel,
    QuoteFilter,
    ServiceClass,
)

AU_POSTCODE_RE = re.compile(r"^\d{4}$")


class CarrierCode(str, Enum):
    AUSPOST = "auspost"
    INTERPARCEL = "interparcel"


# =============================================================================
# Carrier-Agnostic Request
# =============================================================================

@dataclass(frozen=True)
class QuoteRequest:
    """What a carrier is asked to price: one packing per service class."""
    origin: Address
    destination: Address
    parcels_by_class: Dict[ServiceClass, Tuple[PackedParcel, ...]] = field(default_factory=dict)

    @property
    def service_classes(self) -> List[ServiceClass]:
        return list(self.parcels_by_class.keys())

    def parcels_for(self, service_class: ServiceClass) -> Tuple[PackedParcel, ...]:
        return self.parcels_by_class.get(service_class, ())


# =============================================================================
# Base Carrier Interface
# =============================================================================

class BaseCarrier(ABC):
    """
    Abstract base class for all shipping carriers.

    Adapters own an HTTP client and must be closed with close().
    """

    def __init__(self, http_client: Optional[ResilientHTTPClient] = None):
        self._http = http_client

    @property
    @abstractmethod
    def carrier_code(self) -> CarrierCode:
        """Return the carrier code enum value."""
        pass

    @property
    @abstractmethod
    def carrier_name(self) -> str:
        """Return the human-readable carrier name used on quotes."""
        pass

    @abstractmethod
    async def get_quotes(
        self,
        request: QuoteRequest,
        quote_filter: Optional[QuoteFilter] = None,
    ) -> List[CarrierQuote]:
        """
        Get normalized quotes for the request.

        Raises:
            CarrierUnavailableError: timeout, connection error, 429/5xx, open circuit
            QuoteRejectedError: the carrier declined the request
            QuoteParseError: the response had an unexpected shape
        """
        pass

    def validate_postcode(self, postcode: str) -> str:
        """Australian postcodes are four digits. Override for other formats."""
        cleaned = (postcode or "").strip()
        if not AU_POSTCODE_RE.match(cleaned):
            raise ShippingValidationError(
                f"{self.carrier_name} requires a 4-digit postcode (got {postcode!r})",
                field="postcode",
            )
        return cleaned

    def serves(self, quote_filter: Optional[QuoteFilter] = None) -> bool:
        """
        Whether this carrier should be called for the filter at all.

        Aggregators return quotes under other carriers' names, so they
        override this.
        """
        if quote_filter is None or not quote_filter.carriers:
            return True
        return quote_filter.allows_carrier(self.carrier_name)

    async def close(self) -> None:
        if self._http:
            await self._http.close()

    def _unavailable(self, error: Exception) -> CarrierUnavailableError:
        """Map a transport-level failure from the HTTP client."""
        if isinstance(error, CircuitOpenError):
            reason = "circuit open"
        elif isinstance(error, RateLimitExceeded):
            reason = f"rate limited for {error.wait_time:.0f}s"
        elif isinstance(error, httpx.TimeoutException):
            reason = "timed out"
        elif isinstance(error, httpx.HTTPStatusError):
            reason = f"HTTP {error.response.status_code}"
        else:
            reason = f"connection error ({error.__class__.__name__})"
        return CarrierUnavailableError(f"{self.carrier_name} unavailable: {reason}", carrier=self.carrier_name)

    def _json(self, response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            raise QuoteParseError(
                f"{self.carrier_name} returned a non-JSON body (HTTP {response.status_code})",
                carrier=self.carrier_name,
            )
        if not isinstance(data, dict):
            raise QuoteParseError(
                f"{self.carrier_name} returned {type(data).__name__}, expected an object",
                carrier=self.carrier_name,
            )
        return data
