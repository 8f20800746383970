"""
Identity middleware.
Reads the acting user and roles injected by the upstream gateway and stores them in request.state.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request

from ..utils.logger import get_logger

logger = get_logger(__name__)


def parse_role_ids(raw: str) -> list:
    """'r1, r2,,r3' -> ['r1', 'r2', 'r3']"""
    if not raw:
        return []
    return [role.strip() for role in raw.split(",") if role.strip()]


class IdentityMiddleware(BaseHTTPMiddleware):
    """
    Middleware to extract identity information from request headers.
    Sets request.state.user_id and request.state.role_ids for use in routes.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.user_id = request.headers.get("X-User-ID") or None
        request.state.role_ids = parse_role_ids(request.headers.get("X-Role-IDs", ""))

        logger.debug(
            f"[IdentityMiddleware] Request: {request.method} {request.url.path} | "
            f"User: {request.state.user_id or 'anonymous'} | Roles: {request.state.role_ids}"
        )

        response = await call_next(request)
        return response
