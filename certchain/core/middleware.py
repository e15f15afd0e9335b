"""
Core middleware components for CertChain Backend.
Includes CORS, logging, security headers, and rate limiting middleware.
"""

import time
import uuid
from typing import Callable, Optional
from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .rate_limit import SlidingWindowStore
from ..utils.logger import get_logger

logger = get_logger("middleware")


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for logging HTTP requests and responses.
    Logs method, path, response time, and status code.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())[:8]
        start_time = time.time()

        method = request.method
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"

        logger.info(f"[{request_id}] {method} {path} - Client: {client_ip}")

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.error(
                f"[{request_id}] {method} {path} - "
                f"Error: {str(e)} - "
                f"Time: {process_time:.4f}s"
            )
            raise

        process_time = time.time() - start_time
        logger.info(
            f"[{request_id}] {method} {path} - "
            f"Status: {response.status_code} - "
            f"Time: {process_time:.4f}s"
        )

        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        response.headers["X-Request-ID"] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to all responses.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-client rate limiting over a sliding window.

    The request log is owned by this middleware instance; pass a shared
    store to have several instances count together.
    """

    def __init__(self, app, calls: int = 100, period: int = 10, store: Optional[SlidingWindowStore] = None):
        """
        Initialize rate limiting middleware.

        Args:
            app: FastAPI application instance
            calls: Maximum number of calls allowed per period
            period: Time period in seconds
            store: Request log, a fresh one per instance by default
        """
        super().__init__(app)
        self.calls = calls
        self.period = period
        self.store = store or SlidingWindowStore(period)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client_ip = request.client.host if request.client else "unknown"

        if not self.store.hit(client_ip, self.calls):
            logger.warning(f"Rate limit exceeded for IP: {client_ip}")
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Rate limit exceeded",
                    "message": f"Maximum {self.calls} requests per {self.period} seconds"
                }
            )

        return await call_next(request)


def setup_cors_middleware(app):
    """
    Setup CORS middleware. Verification pages are public, so any origin may call.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"]
    )


def setup_middleware_stack(app, rate_limit_calls: int = 100, rate_limit_period: int = 10,
                           enable_rate_limiting: bool = True):
    """
    Setup the complete middleware stack for the application.

    Args:
        app: FastAPI application instance
        rate_limit_calls: Requests allowed per client per period
        rate_limit_period: Rate limit window in seconds
        enable_rate_limiting: Whether to enable rate limiting middleware
    """
    # Middleware is applied in reverse order of registration

    if enable_rate_limiting:
        app.add_middleware(
            RateLimitMiddleware,
            calls=rate_limit_calls,
            period=rate_limit_period,
            store=SlidingWindowStore(rate_limit_period),
        )

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(LoggingMiddleware)
    setup_cors_middleware(app)
