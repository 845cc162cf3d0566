import logging
import re
import time
import uuid
from typing import Callable, List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
_CORRELATION_PATTERN = re.compile(r'^[A-Za-z0-9._-]{1,64}$')


def resolve_request_id(header_value: Optional[str]) -> str:
    """Reuse a well-formed incoming correlation id, otherwise generate one"""
    if header_value and _CORRELATION_PATTERN.match(header_value):
        return header_value
    return str(uuid.uuid4())[:8]


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request/response logging with a request id echoed back to the client"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = resolve_request_id(request.headers.get(CORRELATION_HEADER))

        start_time = time.time()
        logger.info(
            f"Request {request_id}: {request.method} {request.url.path} "
            f"from {request.client.host if request.client else 'unknown'}"
        )

        request.state.request_id = request_id

        try:
            response = await call_next(request)

            duration = time.time() - start_time
            logger.info(f"Response {request_id}: {response.status_code} in {duration:.3f}s")

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration:.3f}s"

            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(f"Error {request_id}: {str(e)} after {duration:.3f}s")
            raise


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to responses"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Results are personal data
        if request.url.path.startswith("/api/v1/results"):
            response.headers["Cache-Control"] = "no-store"

        return response


def setup_middleware(app: FastAPI, allowed_origins: List[str]) -> None:
    """Setup all middleware for the application"""

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials="*" not in allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Response-Time"]
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(LoggingMiddleware)

    logger.info("Middleware setup complete")
