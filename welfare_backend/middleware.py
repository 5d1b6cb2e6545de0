"""
Request guard middleware

Per-route body budgets and per-client rate limits for the conversation and
analysis APIs. There is no authentication; ``userId`` is only a partition key.

Routes are grouped into tiers:

- ``save``: ``POST /api/conversations/save``. The client re-sends the full
  history after every exchange, so this tier is the busiest and the largest.
- ``write``: analysis saves and deletes, conversation soft deletes.
- ``read``: history, fetch, search, stats.
"""

import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, Mapping, Optional, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from welfare_backend.config import (
    MAX_ANALYSIS_BYTES,
    MAX_CONVERSATION_BYTES,
    MAX_REQUEST_BYTES,
    RATE_LIMIT_READ,
    RATE_LIMIT_SAVE,
    RATE_LIMIT_WINDOW,
    RATE_LIMIT_WRITE,
)

logger = logging.getLogger(__name__)

CONVERSATION_SAVE_PATH = "/api/conversations/save"
ANALYSIS_SAVE_PATH = "/api/welfare-analyses"
UNGUARDED_PATHS = {"/health"}

SEARCH_PATH = "/api/conversations/search"

DEFAULT_BODY_BUDGETS = {
    "conversation": MAX_CONVERSATION_BYTES,
    "analysis": MAX_ANALYSIS_BYTES,
    "request": MAX_REQUEST_BYTES,
}

DEFAULT_RATE_LIMITS = {
    "save": RATE_LIMIT_SAVE,
    "write": RATE_LIMIT_WRITE,
    "read": RATE_LIMIT_READ,
}


def _normalize_path(path: str) -> str:
    return path.rstrip("/") or "/"


def body_budget_name(method: str, path: str) -> str:
    """Which body budget applies to a request."""
    path = _normalize_path(path)
    if method == "POST" and path == CONVERSATION_SAVE_PATH:
        return "conversation"
    if method == "POST" and path == ANALYSIS_SAVE_PATH:
        return "analysis"
    return "request"


def rate_tier(method: str, path: str) -> str:
    """Which rate limit tier a request counts against."""
    path = _normalize_path(path)
    if method == "POST" and path == CONVERSATION_SAVE_PATH:
        return "save"
    # Search is a read that happens to carry a JSON filter body.
    if method == "POST" and path == SEARCH_PATH:
        return "read"
    if method in {"POST", "PUT", "PATCH", "DELETE"}:
        return "write"
    return "read"


def _is_unguarded(request: Request) -> bool:
    if _normalize_path(request.url.path) in UNGUARDED_PATHS:
        return True
    # CORS preflight
    return request.method == "OPTIONS" and "access-control-request-method" in request.headers


def _failure(status_code: int, error: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
        headers=headers,
    )


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """
    Reject requests whose declared Content-Length exceeds the route's budget.

    Conversation saves get the largest budget, analysis saves a budget sized
    to the notes limit, and everything else a small one.
    """

    def __init__(self, app: ASGIApp, budgets: Optional[Mapping[str, int]] = None):
        super().__init__(app)
        self.budgets = dict(DEFAULT_BODY_BUDGETS)
        if budgets:
            self.budgets.update(budgets)

    async def dispatch(self, request: Request, call_next: Callable):
        content_length = request.headers.get("content-length")
        if content_length is None or _is_unguarded(request):
            return await call_next(request)

        try:
            length = int(content_length)
        except ValueError:
            return _failure(status.HTTP_400_BAD_REQUEST, "Invalid Content-Length header.")

        budget = body_budget_name(request.method, request.url.path)
        limit = self.budgets[budget]
        if length > limit:
            logger.warning(
                "[LIMITS] %s %s body of %d bytes exceeds %s budget of %d bytes",
                request.method, request.url.path, length, budget, limit,
            )
            return _failure(
                status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                f"Request body too large for {budget} ({length} > {limit} bytes).",
            )

        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window rate limit per (client, tier), kept in process memory.

    Expired hits are swept from every key at most once per window, and a key
    whose window is empty is dropped, so memory tracks active clients only.
    """

    def __init__(
        self,
        app: ASGIApp,
        limits: Optional[Mapping[str, int]] = None,
        window: int = RATE_LIMIT_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(app)
        self.limits = dict(DEFAULT_RATE_LIMITS)
        if limits:
            self.limits.update(limits)
        self.window = window
        self.clock = clock
        self._hits: Dict[Tuple[str, str], Deque[float]] = {}
        self._last_sweep: Optional[float] = None

    def _evict_expired(self, now: float) -> None:
        cutoff = now - self.window
        for key in list(self._hits):
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if not hits:
                del self._hits[key]
        self._last_sweep = now

    def hit(self, client: str, tier: str) -> bool:
        """Record a request; False when the client is over its tier limit."""
        now = self.clock()
        if self._last_sweep is None or now - self._last_sweep >= self.window:
            self._evict_expired(now)

        key = (client, tier)
        hits = self._hits.get(key)
        if hits is not None:
            cutoff = now - self.window
            while hits and hits[0] <= cutoff:
                hits.popleft()

        if hits is not None and len(hits) >= self.limits[tier]:
            return False

        self._hits.setdefault(key, deque()).append(now)
        return True

    async def dispatch(self, request: Request, call_next: Callable):
        if _is_unguarded(request):
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        tier = rate_tier(request.method, request.url.path)

        if not self.hit(client, tier):
            logger.warning(
                "[RATE LIMIT] %s exceeded %s tier (%d per %ds) on %s %s",
                client, tier, self.limits[tier], self.window, request.method, request.url.path,
            )
            return _failure(
                status.HTTP_429_TOO_MANY_REQUESTS,
                f"Rate limit exceeded ({tier} tier: {self.limits[tier]} requests per {self.window}s).",
                headers={"Retry-After": str(self.window)},
            )

        return await call_next(request)


def configure_request_guards(
    app,
    body_budgets: Optional[Mapping[str, int]] = None,
    rate_limits: Optional[Mapping[str, int]] = None,
):
    """
    Install body budgets and rate limits on the app.

    Starlette runs middleware in reverse registration order, so the rate
    limit (added last) sees requests before the body check.
    """
    app.add_middleware(BodySizeLimitMiddleware, budgets=body_budgets)
    app.add_middleware(RateLimitMiddleware, limits=rate_limits)

    budgets = {**DEFAULT_BODY_BUDGETS, **(body_budgets or {})}
    limits = {**DEFAULT_RATE_LIMITS, **(rate_limits or {})}
    logger.info("[LIMITS] Body budgets (bytes): %s", budgets)
    logger.info("[LIMITS] Rate limits per %ds: %s", RATE_LIMIT_WINDOW, limits)
