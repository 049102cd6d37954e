"""
Rate limiting

Every shipping estimate fans out to paid carrier APIs, so the estimate
endpoint gets its own tighter limit. In-memory storage (single instance).
"""
import logging
from fastapi import FastAPI
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from ggd_shipping.core.config import settings

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Shopper IP: first X-Forwarded-For hop behind the proxy, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    return first_hop or get_remote_address(request)


limiter = Limiter(
    key_func=get_client_ip,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the same {code, message, retryable} shape as the other API errors."""
    logger.warning(f"[RATE] {get_client_ip(request)} over limit on {request.url.path} ({exc.detail})")

    return JSONResponse(
        status_code=429,
        content={
            "code": "RATE_LIMITED",
            "message": "Too many shipping requests. Please wait a minute and try again.",
            "retryable": True,
        },
        headers={"Retry-After": "60"},
    )


def install_rate_limiting(app: FastAPI, app_limiter: Limiter = limiter) -> None:
    """
    Wire the limiter into app. The middleware applies RATE_LIMIT_DEFAULT to
    routes without their own @limiter.limit.
    """
    app.state.limiter = app_limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)


def get_estimate_limit():
    """Decorator applying RATE_LIMIT_ESTIMATE to the estimate endpoint."""
    return limiter.limit(settings.RATE_LIMIT_ESTIMATE)
