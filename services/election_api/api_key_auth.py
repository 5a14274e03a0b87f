"""API key gate for the public API.

Every request under the public prefix (except its health check) must carry
an ``X-API-Key`` header. The key is validated, counted against its
per-minute window, and the call is logged once the response is ready.
"""
import logging
import time

from fastapi import Request

from .api_keys import api_key_service
from .config import settings
from .errors import AppError, RateLimited, app_error_handler
from .metrics import api_key_requests

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
PUBLIC_PREFIX = f"{settings.api_prefix}/public"
EXEMPT_PATHS = {f"{PUBLIC_PREFIX}/health"}


def requires_api_key(path: str) -> bool:
    return path.startswith(PUBLIC_PREFIX) and path not in EXEMPT_PATHS


async def api_key_middleware(request: Request, call_next):
    """Validate, rate limit and log public API requests."""
    path = request.url.path
    if not requires_api_key(path):
        return await call_next(request)

    started = time.perf_counter()
    try:
        key = await api_key_service.validate_api_key(request.headers.get(API_KEY_HEADER))
        rate = await api_key_service.check_rate_limit(key["key_id"], key["rate_limit_per_minute"])
    except AppError as exc:
        api_key_requests.labels(outcome=exc.code.lower()).inc()
        return await app_error_handler(request, exc)

    if rate.allowed:
        request.state.api_key = key
        request.state.rate_limit = rate
        response = await call_next(request)
        response.headers.update(rate.headers())
        api_key_requests.labels(outcome="allowed").inc()
    else:
        logger.warning(f"API key {key['key_id']} exceeded {rate.limit} requests/minute")
        api_key_requests.labels(outcome="rate_limited").inc()
        response = await app_error_handler(
            request,
            RateLimited(
                "Rate limit exceeded. Try again later.",
                retry_after=rate.retry_after,
                headers=rate.headers()
            )
        )

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    await api_key_service.log_request(
        key["key_id"],
        path,
        request.method,
        response.status_code,
        elapsed_ms,
        request.client.host if request.client else None,
        request.headers.get("user-agent")
    )
    return response
