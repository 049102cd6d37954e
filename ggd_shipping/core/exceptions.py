"""
Geelong Garage Doors Exception Hierarchy

Structured exception classes for the shipping subsystem.
All exceptions include code, message, and details for logging and
for the JSON error bodies returned by the API.

Exception Hierarchy:
    GGDBaseError
    ├── ConfigurationError
    └── ShippingError
        ├── ShippingValidationError
        ├── CarrierError
        │   ├── CarrierUnavailableError   (retryable)
        │   ├── QuoteRejectedError
        │   └── QuoteParseError
        └── AllCarriersUnavailableError   (retryable)
"""
from typing import Optional, Dict, Any, List


class GGDBaseError(Exception):
    """
    Base exception for all Geelong Garage Doors custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging
        severity: P0-P3 severity level
    """

    default_code: str = "GGD_ERROR"
    default_severity: str = "P2"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

class ConfigurationError(GGDBaseError):
    """Invalid static configuration (tier catalog, carrier settings)."""
    default_code = "CONFIG_ERROR"
    default_severity = "P1"

# =============================================================================
# SHIPPING ERRORS
# =============================================================================

class ShippingError(GGDBaseError):
    """Base exception for shipping-related errors."""
    default_code = "SHIPPING_ERROR"
    default_severity = "P1"

class ShippingValidationError(ShippingError):
    """Bad input dimensions or postcode. Raised before any network call."""
    default_code = "SHIPPING_VALIDATION_FAILED"
    default_severity = "P3"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["field"] = field
        super().__init__(message, details=details, **kwargs)
        self.field = field

class CarrierError(ShippingError):
    """Base exception for a single carrier's failure to quote."""
    default_code = "CARRIER_ERROR"
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        carrier: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["carrier"] = carrier
        super().__init__(message, details=details, **kwargs)
        self.carrier = carrier

class CarrierUnavailableError(CarrierError):
    """Network error, timeout or carrier outage. The caller may retry or try another carrier."""
    default_code = "CARRIER_UNAVAILABLE"
    retryable = True

class QuoteRejectedError(CarrierError):
    """The carrier explicitly declined the request (area not serviced, bad dimensions)."""
    default_code = "QUOTE_REJECTED"
    default_severity = "P3"

class QuoteParseError(CarrierError):
    """The carrier answered with a response shape we do not understand."""
    default_code = "QUOTE_PARSE_FAILED"

class AllCarriersUnavailableError(ShippingError):
    """No carrier produced a usable quote for the shipment."""
    default_code = "ALL_CARRIERS_UNAVAILABLE"
    default_severity = "P1"
    retryable = True

    def __init__(
        self,
        message: str = "Unable to calculate shipping, please try again.",
        failures: Optional[List[Dict[str, Any]]] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["failures"] = failures or []
        super().__init__(message, details=details, **kwargs)
