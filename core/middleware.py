"""
Application Middleware for the Portfolio Live API.

This module defines the FastAPI middleware and exception handlers responsible
for the cross-cutting concerns of the service: request correlation, error
rendering, performance logging, security headers and early request
validation.

Key Middleware Components:
- `CorrelationMiddleware`: assigns a correlation ID to every request (or reuses
  `X-Correlation-ID` / `X-Request-ID`), stores it in the logging context and
  echoes it back in the `X-Correlation-ID` response header.
- `ErrorHandlingMiddleware`: last line of defense for exceptions nobody
  classified. Renders them as 500 `INTERNAL_ERROR`; the message is generic in
  production and the exception text elsewhere.
- `PerformanceMiddleware`: logs request start and completion, adds
  `X-Process-Time` (milliseconds) and warns about slow requests.
- `SecurityMiddleware`: adds standard security headers to every response.
- `RequestValidationMiddleware`: rejects oversized bodies (413) and bodies with
  an unsupported content type (415) before routing.

Exception Handlers:
- `install_error_handlers(app, environment)` registers handlers for `PortfolioAPIException`
  (status taken from the exception), FastAPI request validation errors (400
  `VALIDATION_ERROR`) and Starlette HTTP exceptions, so every error body has
  the same shape:

      {"error": {"type", "code", "message", "details", "correlation_id"}}

  In production a 5xx application error that is not marked `client_safe` is
  rendered with a generic message and empty details; the full text is logged.

Ordering: `CorrelationMiddleware` must be the outermost of these so the
correlation ID is available to all subsequent middleware and handlers.
"""

import time
import uuid
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .logging_config import set_correlation_id, get_correlation_id, get_logger
from .exceptions import PortfolioAPIException, ValidationError
from .validation import RequestValidator

logger = get_logger("core.middleware")


def _request_correlation_id(request: Request) -> Optional[str]:
    return getattr(request.state, "correlation_id", None) or get_correlation_id()


def create_error_response(
    error_type: str,
    error_code: str,
    message: str,
    status_code: int = 400,
    correlation_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Create standardized error response"""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "type": error_type,
                "code": error_code,
                "message": message,
                "details": details or {},
                "correlation_id": correlation_id,
            }
        },
    )


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation IDs to requests"""

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Generate or extract correlation ID
        correlation_id = (
            request.headers.get("X-Correlation-ID")
            or request.headers.get("X-Request-ID")
            or str(uuid.uuid4())
        )

        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        response = await call_next(request)

        response.headers["X-Correlation-ID"] = correlation_id

        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware for unclassified errors"""

    def __init__(self, app: ASGIApp, environment: str = "development"):
        super().__init__(app)
        self.environment = environment

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except PortfolioAPIException as e:
            # Normally rendered by the registered handler
            return render_application_error(request, e, self.environment)

        except Exception as e:
            logger.error(
                f"Unexpected error: {str(e)}",
                extra={
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                },
                exc_info=True,
            )

            if self.environment == "production":
                message = "An unexpected error occurred"
                details = {}
            else:
                message = str(e) or type(e).__name__
                details = {"exception": type(e).__name__}

            return create_error_response(
                "InternalServerError",
                "INTERNAL_ERROR",
                message,
                status_code=500,
                correlation_id=_request_correlation_id(request),
                details=details,
            )


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Middleware for performance monitoring and logging"""

    def __init__(self, app: ASGIApp, slow_request_seconds: float = 1.0):
        super().__init__(app)
        self.slow_request_seconds = slow_request_seconds

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        logger.info(
            f"Request started: {request.method} {request.url.path}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "query_params": dict(request.query_params),
                "user_agent": request.headers.get("user-agent"),
                "client_ip": request.client.host if request.client else None,
            },
        )

        response = await call_next(request)

        process_time = time.time() - start_time

        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

        logger.info(
            f"Request completed: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "process_time_ms": round(process_time * 1000, 2),
            },
        )

        if process_time > self.slow_request_seconds:
            logger.warning(
                f"Slow request detected: {request.method} {request.url.path}",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "process_time_ms": round(process_time * 1000, 2),
                    "threshold_exceeded": True,
                },
            )

        return response


class SecurityMiddleware(BaseHTTPMiddleware):
    """Middleware adding security headers"""

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
    }

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        for header, value in self.HEADERS.items():
            response.headers[header] = value

        return response


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """Middleware for request size and content type checks"""

    def __init__(self, app: ASGIApp, max_request_size: int = 10 * 1024 * 1024):
        super().__init__(app)
        self.max_request_size = max_request_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        try:
            body_size = int(content_length) if content_length else 0
        except ValueError:
            body_size = 0

        try:
            RequestValidator.validate_request_size(body_size, self.max_request_size)
        except ValidationError:
            logger.warning(
                f"Request too large: {body_size} bytes",
                extra={
                    "content_length": body_size,
                    "max_size": self.max_request_size,
                    "path": request.url.path,
                },
            )
            return create_error_response(
                "PayloadTooLarge",
                "REQUEST_TOO_LARGE",
                f"Request size exceeds maximum allowed size of {self.max_request_size} bytes",
                status_code=413,
                correlation_id=_request_correlation_id(request),
            )

        # Only requests that carry a body need a known content type
        if request.method in ("POST", "PUT", "PATCH") and body_size > 0:
            content_type = request.headers.get("content-type", "")
            try:
                RequestValidator.validate_content_type(content_type)
            except ValidationError:
                logger.warning(
                    f"Invalid content type: {content_type}",
                    extra={
                        "content_type": content_type,
                        "path": request.url.path,
                        "method": request.method,
                    },
                )
                return create_error_response(
                    "UnsupportedMediaType",
                    "INVALID_CONTENT_TYPE",
                    f"Content type '{content_type}' is not supported",
                    status_code=415,
                    correlation_id=_request_correlation_id(request),
                )

        return await call_next(request)


def render_application_error(
    request: Request, exc: PortfolioAPIException, environment: str = "development"
) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Application error: {exc.message}",
        extra={
            "error_type": type(exc).__name__,
            "error_code": exc.error_code,
            "details": exc.details,
            "path": request.url.path,
            "method": request.method,
        },
    )

    message, details = exc.message, exc.details
    if environment == "production" and exc.status_code >= 500 and not exc.client_safe:
        message, details = "An unexpected error occurred", {}

    return create_error_response(
        type(exc).__name__,
        exc.error_code,
        message,
        status_code=exc.status_code,
        correlation_id=_request_correlation_id(request),
        details=details,
    )


def install_error_handlers(app: FastAPI, environment: str = "development") -> None:
    """Register JSON renderers for application, validation and HTTP errors"""

    @app.exception_handler(PortfolioAPIException)
    async def application_error_handler(
        request: Request, exc: PortfolioAPIException
    ) -> JSONResponse:
        return render_application_error(request, exc, environment)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "body"
        logger.warning(
            f"Request validation failed on {field}",
            extra={"path": request.url.path, "method": request.method},
        )
        return create_error_response(
            "ValidationError",
            "VALIDATION_ERROR",
            f"Validation failed for field '{field}': {first.get('msg', 'invalid')}",
            status_code=400,
            correlation_id=_request_correlation_id(request),
            details={"field": field, "errors": len(errors)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        logger.warning(
            f"HTTP exception: {exc.status_code} - {exc.detail}",
            extra={
                "status_code": exc.status_code,
                "path": request.url.path,
                "method": request.method,
            },
        )
        return create_error_response(
            "HTTPException",
            f"HTTP_{exc.status_code}",
            str(exc.detail),
            status_code=exc.status_code,
            correlation_id=_request_correlation_id(request),
        )
