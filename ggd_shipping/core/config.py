"""
Application configuration

Carrier credentials have no defaults. In production every enabled carrier
must have its API key set, otherwise settings fail to load.
"""
import json
import logging
import os
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "https://geelonggaragedoors.com.au",
    "https://www.geelonggaragedoors.com.au",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # App - defaults are PRODUCTION safe
    APP_NAME: str = "Geelong Garage Doors Shipping"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"
    LOG_LEVEL: str = "INFO"

    # Storefront origins allowed to call the estimate API
    CORS_ORIGINS: Union[str, List[str]] = DEFAULT_CORS_ORIGINS

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def split_cors_origins(cls, v):
        """JSON array or comma-separated list; blank means the defaults."""
        if not isinstance(v, str):
            return v
        v = v.strip()
        if not v:
            return DEFAULT_CORS_ORIGINS
        if v.startswith("["):
            return json.loads(v)
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        return str(v).upper() if v else "INFO"

    # Rate limiting (SlowAPI, per client IP)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "120/minute"
    RATE_LIMIT_ESTIMATE: str = "30/minute"

    # Australia Post (single-carrier rate calculator)
    AUSPOST_API_KEY: str = ""
    AUSPOST_BASE_URL: str = "https://digitalapi.auspost.com.au"

    # Interparcel (multi-carrier aggregator)
    INTERPARCEL_API_KEY: str = ""
    INTERPARCEL_BASE_URL: str = "https://api.interparcel.com"
    INTERPARCEL_API_VERSION: str = "3"

    # Carrier toggles
    SHIPPING_AUSPOST_ENABLED: bool = True
    SHIPPING_INTERPARCEL_ENABLED: bool = True

    # Store (collection) address - Geelong
    SHIPPING_ORIGIN_POSTCODE: str = "3220"
    SHIPPING_ORIGIN_CITY: str = "Geelong"
    SHIPPING_ORIGIN_STATE: str = "VIC"
    SHIPPING_ORIGIN_COUNTRY: str = "AU"
    SHIPPING_CONTACT_PHONE: str = "(03) 5221 8999"

    # Pricing
    SHIPPING_GST_RATE: Decimal = Decimal("0.10")

    @field_validator("SHIPPING_GST_RATE")
    @classmethod
    def validate_gst_rate(cls, v):
        if v < 0 or v >= 1:
            raise ValueError("SHIPPING_GST_RATE must be between 0 and 1")
        return v

    # Carrier call policy
    SHIPPING_CARRIER_TIMEOUT_SECONDS: float = 10.0
    SHIPPING_CARRIER_MAX_RETRIES: int = 1
    SHIPPING_ESTIMATE_DEADLINE_SECONDS: float = 25.0  # per carrier, retries included
    SHIPPING_RETRY_BASE_DELAY: float = 0.5
    SHIPPING_CIRCUIT_FAILURE_THRESHOLD: int = 5
    SHIPPING_CIRCUIT_TIMEOUT_SECONDS: float = 60.0

    @field_validator("SHIPPING_CARRIER_MAX_RETRIES")
    @classmethod
    def validate_max_retries(cls, v):
        if v < 0:
            raise ValueError("SHIPPING_CARRIER_MAX_RETRIES cannot be negative")
        return v

    # Optional JSON file replacing the built-in box/satchel catalog
    SHIPPING_TIER_CATALOG_PATH: Optional[str] = None

    @model_validator(mode="after")
    def validate_production_config(self):
        """Runtime validation to catch unusable production configurations."""
        if self.ENVIRONMENT == "production":
            errors = []

            if self.DEBUG:
                errors.append(
                    "DEBUG=True is forbidden in production. "
                    "Set DEBUG=false or ENVIRONMENT=development"
                )

            if self.SHIPPING_AUSPOST_ENABLED and not self.AUSPOST_API_KEY:
                errors.append("AUSPOST_API_KEY is required while SHIPPING_AUSPOST_ENABLED=true")

            if self.SHIPPING_INTERPARCEL_ENABLED and not self.INTERPARCEL_API_KEY:
                errors.append("INTERPARCEL_API_KEY is required while SHIPPING_INTERPARCEL_ENABLED=true")

            for origin in self.CORS_ORIGINS:
                if origin == "*":
                    errors.append("Wildcard '*' CORS origin is forbidden in production")

            if errors:
                raise ValueError(
                    "PRODUCTION CONFIGURATION ERRORS:\n" + "\n".join(f"  - {e}" for e in errors)
                )

        return self


# Try to load settings, provide helpful error on failure
try:
    settings = Settings()
except Exception:
    # Without an explicit environment, fall back to development rules
    if os.getenv("ENVIRONMENT", "development") == "development":
        logger.warning(
            "Settings validation failed, using development defaults. "
            "Set AUSPOST_API_KEY and INTERPARCEL_API_KEY in .env file."
        )
        os.environ.setdefault("ENVIRONMENT", "development")
        settings = Settings()
    else:
        raise
