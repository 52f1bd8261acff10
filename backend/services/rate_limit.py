"""
Rate Limiting Configuration

Protects the Jira integration against abuse:
- Sync preview and execution (each preview walks a whole Jira project)
- Imports
- General API reads and writes
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request, Response
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


def get_user_id_or_ip(request: Request) -> str:
    """
    Get user ID from request state if authenticated, otherwise fall back to IP.
    This allows per-user rate limiting for authenticated requests.
    """
    user_id = getattr(request.state, 'user_id', None)
    if user_id:
        return f"user:{user_id}"

    return f"ip:{get_remote_address(request)}"


# In-memory storage; use Redis ("redis://localhost:6379") with multiple workers
limiter = Limiter(
    key_func=get_user_id_or_ip,
    default_limits=["200/minute"],
    storage_uri="memory://",
    strategy="fixed-window"
)

RATE_LIMITS = {
    # Jira sync
    "sync_preview": "20/minute",
    "sync_execute": "5/minute",
    "jira_import": "5/minute",

    # General API
    "api_read": "100/minute",
    "api_write": "30/minute",
}


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Custom handler for rate limit exceeded errors.
    Returns the same {success: false, error} envelope as the sync endpoints.
    """
    retry_after = getattr(exc, 'retry_after', 60)

    client_id = get_user_id_or_ip(request)
    logger.warning(
        f"Rate limit exceeded for {client_id} on {request.url.path}",
        extra={
            "client_id": client_id,
            "path": request.url.path,
            "method": request.method,
            "limit": str(exc.detail) if hasattr(exc, 'detail') else "unknown"
        }
    )

    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": f"Too many requests. Please wait {retry_after} seconds before trying again.",
            "error_code": "RATE_LIMIT_EXCEEDED",
            "retry_after_seconds": retry_after,
        },
        headers={
            "Retry-After": str(retry_after),
            "X-RateLimit-Limit": str(exc.detail) if hasattr(exc, 'detail') else "unknown",
        }
    )


def limit_sync(limit: str = RATE_LIMITS["sync_execute"]):
    """Rate limit decorator for Jira sync endpoints."""
    return limiter.limit(limit, key_func=get_user_id_or_ip)


def limit_api_write(limit: str = RATE_LIMITS["api_write"]):
    """Rate limit decorator for write endpoints."""
    return limiter.limit(limit, key_func=get_user_id_or_ip)
