"""Rate limiting at the request boundary.

Counting, windows and bot detection live in an external limiter; this
module only consumes its decision. A denied decision becomes a 429 with a
`Retry-After` header before any authorization work happens.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.middleware.exceptions import RateLimitExceededError, create_error_response

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    reason: str = ""
    retry_after: Optional[int] = None  # seconds


class RateLimiter(Protocol):
    async def check(self, request: Request) -> RateLimitDecision: ...


def raise_for_decision(decision: RateLimitDecision) -> None:
    """Raise RateLimitExceededError for a denied decision."""
    if not decision.allowed:
        raise RateLimitExceededError(decision.reason, retry_after=decision.retry_after)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Ask the limiter about every non-exempt request; reject with 429 if denied.

    Without a limiter configured every request passes through.
    """

    def __init__(
        self,
        app,
        limiter: Optional[RateLimiter] = None,
        exempt_paths: Optional[list[str]] = None,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.exempt_paths = exempt_paths or ["/health", "/docs", "/openapi.json"]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self.limiter is None:
            return await call_next(request)

        # Skip exempt paths
        if any(request.url.path.startswith(path) for path in self.exempt_paths):
            return await call_next(request)

        decision = await self.limiter.check(request)
        try:
            raise_for_decision(decision)
        except RateLimitExceededError as exc:
            # Exception handlers sit inside this middleware, so build the
            # response here.
            logger.warning(
                f"Rate limit exceeded on {request.url.path}: {exc.reason}",
                extra={"path": request.url.path, "reason": exc.reason},
            )
            return create_error_response(
                status_code=exc.status_code,
                message=exc.message,
                error_code=exc.error_code,
                headers=exc.headers,
            )

        return await call_next(request)
