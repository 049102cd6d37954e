"""
Geelong Garage Doors Shipping API
FastAPI application entry point

- Shipping estimate, tier catalog and classification endpoints under /api/shipping
- Per-IP rate limiting with SlowAPI
- Structured JSON bodies for GGDBaseError subclasses
- Carrier HTTP clients closed on shutdown
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from ggd_shipping.api.routes import shipping
from ggd_shipping.core.config import settings
from ggd_shipping.core.exceptions import GGDBaseError, ShippingValidationError
from ggd_shipping.core.logging_config import configure_logging
from ggd_shipping.core.rate_limit import install_rate_limiting
from ggd_shipping.modules.shipping.carriers import CarrierFactory
from ggd_shipping.modules.shipping.tiers import get_tier_catalog
from ggd_shipping.services.shipping_service import close_shipping_service

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Load the tier catalog up front so a bad SHIPPING_TIER_CATALOG_PATH fails
    startup instead of the first checkout.
    """
    catalog = get_tier_catalog()
    logger.info(f"Tier catalog loaded: {len(catalog)} tiers")

    enabled = [c.value for c in CarrierFactory.get_registered_carriers() if CarrierFactory.is_enabled(c)]
    if enabled:
        logger.info(f"Carriers enabled: {', '.join(enabled)}")
    else:
        logger.warning("No carriers enabled - every estimate will be unavailable")

    yield

    # Close carrier HTTP clients to prevent connection leaks
    await close_shipping_service()
    logger.info("Carrier HTTP clients closed")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    description="Shipping rate resolver for the Geelong Garage Doors storefront.",
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoints"},
        {"name": "Shipping", "description": "Shipping estimates and packaging tiers"},
    ],
)

install_rate_limiting(app)


@app.exception_handler(GGDBaseError)
async def ggd_error_handler(request: Request, exc: GGDBaseError):
    """Anything the routes don't translate themselves. Internals stay in the logs."""
    status_code = 400 if isinstance(exc, ShippingValidationError) else 503 if exc.retryable else 500
    logger.error(f"{exc.code} on {request.url.path}: {exc.message}", extra={"error": exc.to_dict()})
    return JSONResponse(
        status_code=status_code,
        content={"code": exc.code, "message": exc.message, "retryable": exc.retryable},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(shipping.router, prefix="/api", tags=["Shipping"])


@app.get("/health", tags=["Health"])
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "carriers": {
            c.value: CarrierFactory.is_enabled(c) for c in CarrierFactory.get_registered_carriers()
        },
    }
