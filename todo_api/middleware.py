"""HTTP middleware and exception handlers for request handling, logging, and security."""

import time
import traceback
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings
from .errors import AppError, ErrorCode, ValidationError, translate_integrity_error
from .logger import logger


def _client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _request_id(request: Request) -> str:
    """Request id assigned by the middleware, or a fresh one for responses produced outside it."""
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
    return request_id


# ==================== Graceful Shutdown Middleware ====================

async def graceful_shutdown_middleware(request: Request, call_next):
    """Track active requests and reject new requests during shutdown."""
    shutdown_manager = getattr(request.app.state, "shutdown_manager", None)

    if shutdown_manager and shutdown_manager.is_shutting_down:
        logger.warning(
            f"Rejecting request {request.method} {request.url.path} - service is shutting down"
        )
        return error_response(
            request,
            503,
            "Service is shutting down - please retry with another instance",
            code=ErrorCode.SERVICE_UNAVAILABLE,
            headers={"Retry-After": "10"},
        )

    if shutdown_manager:
        shutdown_manager.request_started()

    try:
        return await call_next(request)
    finally:
        if shutdown_manager:
            shutdown_manager.request_finished()


# ==================== Request ID Middleware ====================

async def add_request_id_middleware(request: Request, call_next):
    """Add unique request ID to each request for tracing across logs."""
    request_id = _request_id(request)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    return response


# ==================== Request Logging Middleware ====================

async def request_logging_middleware(request: Request, call_next):
    """Log every request once it has been answered, with timing and client details."""
    start_time = time.perf_counter()
    request_id = getattr(request.state, "request_id", "unknown")
    client = _client_address(request)
    user_agent = request.headers.get("user-agent", "-")

    try:
        response = await call_next(request)
    except Exception:
        # The traceback is logged once, by the unhandled error handler
        duration = time.perf_counter() - start_time
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} - "
            f"Status: 500 - Duration: {duration:.3f}s - Client: {client} - Agent: {user_agent}"
        )
        raise

    duration = time.perf_counter() - start_time
    logger.info(
        f"[{request_id}] {request.method} {request.url.path} - "
        f"Status: {response.status_code} - Duration: {duration:.3f}s - "
        f"Client: {client} - Agent: {user_agent}"
    )
    return response


# ==================== Security Headers Middleware ====================

def apply_security_headers(response: Response, config: Settings) -> None:
    """Set the security headers every response carries."""
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "0"
    response.headers["Referrer-Policy"] = "no-referrer"
    response.headers["Cross-Origin-Opener-Policy"] = "same-origin"
    response.headers["Cross-Origin-Resource-Policy"] = "same-origin"

    if config.is_production:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    # Allows the CDN assets of the interactive docs
    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
        "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
        "img-src 'self' data: https://fastapi.tiangolo.com; "
        "frame-ancestors 'none'"
    )
    response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"


async def security_headers_middleware(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    apply_security_headers(response, request.app.state.config)
    return response


# ==================== Error Handling ====================

def error_response(
    request: Request,
    status_code: int,
    message: str,
    details=None,
    code: str | None = None,
    exc: BaseException | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    """Render the `{success: false, error: {...}}` envelope shared by every failure."""
    error: dict = {"message": message}
    if details is not None:
        error["details"] = details
    if code is not None:
        error["code"] = code
    config: Settings = request.app.state.config
    if exc is not None and config.is_development:
        error["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    response = JSONResponse(status_code=status_code, content={"success": False, "error": error}, headers=headers)
    # Some failures are rendered outside the header middlewares (server errors, shutdown gate)
    apply_security_headers(response, config)
    response.headers["X-Request-ID"] = _request_id(request)
    return response


def _log_app_error(request: Request, exc: AppError) -> None:
    logger.warning(
        f"{request.method} {request.url.path} from {_client_address(request)} - "
        f"{exc.status_code} {exc.code}: {exc.message}"
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    _log_app_error(request, exc)
    return error_response(request, exc.status_code, exc.message, exc.details, exc.code, exc=exc)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Turn FastAPI/Pydantic validation failures into a 400 ValidationError."""
    details = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", ""),
            "code": error.get("type", ""),
        }
        for error in exc.errors()
    ]
    return await app_error_handler(request, ValidationError("Validation failed", details=details))


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    translated = translate_integrity_error(exc)
    if translated is None:
        return await unhandled_error_handler(request, exc)
    return await app_error_handler(request, translated)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework-raised HTTP errors: unknown routes, wrong methods."""
    if exc.status_code == 404:
        message = f"Route {request.method} {request.url.path} not found"
        code = ErrorCode.ROUTE_NOT_FOUND
    else:
        message = str(exc.detail)
        code = None
    logger.warning(
        f"{request.method} {request.url.path} from {_client_address(request)} - {exc.status_code}: {message}"
    )
    return error_response(request, exc.status_code, message, code=code, headers=getattr(exc, "headers", None))


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(
        f"Rate limit exceeded: {request.method} {request.url.path} from {_client_address(request)} ({exc.detail})"
    )
    return error_response(
        request,
        429,
        "Too many requests from this IP, please try again later.",
        code=ErrorCode.RATE_LIMITED,
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unexpected error on {request.method} {request.url.path} from {_client_address(request)}: {exc}",
        exc_info=exc,
    )
    config: Settings = request.app.state.config
    message = "Internal server error" if config.is_production else str(exc) or "Internal server error"
    return error_response(request, 500, message, code=ErrorCode.INTERNAL_ERROR, exc=exc)


def register_exception_handlers(app: FastAPI) -> None:
    """Install every handler that renders the error envelope."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
