"""
API Middleware

Production middleware for:
- Request logging
- Rate limiting
- Security headers
"""

import time
from typing import Callable, Dict, Iterable, List, Optional
import asyncio
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

from checklistpro.errors import RateLimitedError
from checklistpro.serving.metrics import HTTP_REQUEST_DURATION, HTTP_REQUESTS

logger = structlog.get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing information"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        response = await call_next(request)

        duration = time.perf_counter() - start_time
        duration_ms = duration * 1000
        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        route = request.scope.get("route")
        # Route templates keep label cardinality bounded
        route_path = getattr(route, "path", "unmatched")
        HTTP_REQUESTS.labels(method=request.method, route=route_path, status=str(response.status_code)).inc()
        HTTP_REQUEST_DURATION.labels(method=request.method, route=route_path).observe(duration)

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        response.headers["X-Request-ID"] = request_id

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window in-memory rate limiter, per client address.

    Counts are per process; behind several workers each one limits on its own.
    Clients with no request inside the window are dropped once per window.
    """

    def __init__(
        self,
        app,
        max_requests: int = 1000,
        window_seconds: int = 900,
        exempt_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.exempt_prefixes = tuple(exempt_paths or ("/api/health",))
        self._requests: Dict[str, List[float]] = {}
        self._last_sweep = time.time()
        self._lock = asyncio.Lock()

    def _recent(self, client_id: str, now: float) -> List[float]:
        """Timestamps still inside the window; the key is removed when none remain"""
        recent = [t for t in self._requests.get(client_id, ()) if now - t < self.window_seconds]
        if recent:
            self._requests[client_id] = recent
        else:
            self._requests.pop(client_id, None)
        return recent

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window_seconds:
            return
        for client_id in list(self._requests):
            self._recent(client_id, now)
        self._last_sweep = now

    def hit(self, client_id: str, now: float) -> Optional[int]:
        """
        Record a request.

        Returns:
            Requests remaining in the window, or None if the client is over the limit
        """
        self._sweep(now)
        recent = self._recent(client_id, now)
        if len(recent) >= self.max_requests:
            logger.warning("Rate limit exceeded", client=client_id, requests=len(recent))
            return None

        recent.append(now)
        self._requests[client_id] = recent
        return self.max_requests - len(recent)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(self.exempt_prefixes):
            return await call_next(request)

        client_id = request.client.host if request.client else "unknown"

        async with self._lock:
            remaining = self.hit(client_id, time.time())

        if remaining is None:
            return JSONResponse(
                status_code=RateLimitedError.status_code,
                content=RateLimitedError().to_dict(),
                headers={
                    "Retry-After": str(self.window_seconds),
                    "X-RateLimit-Limit": str(self.max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not request.url.path.startswith(("/docs", "/redoc")):
            response.headers["Content-Security-Policy"] = "default-src 'self'"

        return response
