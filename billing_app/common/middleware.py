"""
Middleware for request actor context
"""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
import logging

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-User-Email"
UNKNOWN_ACTOR = "unknown"


class ActorMiddleware(BaseHTTPMiddleware):
    """
    Middleware that extracts the acting user from the X-User-Email header
    and sets it on request.state for createdBy/lastUpdatedBy fields.

    Authentication happens upstream; the value is stored as-is.
    """

    async def dispatch(self, request: Request, call_next):
        actor = (request.headers.get(ACTOR_HEADER) or "").strip()
        request.state.actor = actor or UNKNOWN_ACTOR

        if actor:
            logger.debug(f"Request to {request.url.path} by {actor}")

        return await call_next(request)
