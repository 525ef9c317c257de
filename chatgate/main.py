"""
Main Application - FastAPI application setup.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest

from chatgate.api.dependencies import close_http_client
from chatgate.api.routes import router
from chatgate.config import settings
from chatgate.db.migration_runner import run_migrations
from chatgate.db.session import close_engines
from chatgate.exceptions import ChatGateError, CooldownError
from chatgate.models.api import ErrorResponse
from chatgate.observability import get_logger, metrics, setup_logging, setup_tracing
from chatgate.observability.logging import log_context
from chatgate.observability.tracing import instrument_fastapi

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)

# Shown instead of the real message for server-side failures
GENERIC_SERVER_ERROR = "Server misconfiguration. Please try again later."


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
        fallback_key_families=sorted(settings.fallback_api_keys),
    )

    if settings.auto_migrate:
        await asyncio.to_thread(run_migrations)

    yield

    logger.info("application_shutting_down")
    await close_http_client()
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(ChatGateError)
async def chatgate_exception_handler(request: Request, exc: ChatGateError) -> JSONResponse:
    """Render every domain error as {error, kind}."""
    message = str(exc)
    if exc.http_status >= 500:
        # Full detail stays server-side; never echo key material or ciphertext
        logger.error(
            "server_error",
            path=request.url.path,
            kind=exc.kind,
            error=message,
        )
        metrics.record_error(type(exc).__name__, request.url.path)
        message = GENERIC_SERVER_ERROR
    else:
        logger.info("request_rejected", path=request.url.path, kind=exc.kind)

    body = ErrorResponse(error=message, kind=exc.kind)
    headers: dict[str, str] = {}
    if isinstance(exc, CooldownError):
        body.retry_after_seconds = exc.retry_after_seconds
        headers["Retry-After"] = str(exc.retry_after_seconds)

    return JSONResponse(
        status_code=exc.http_status,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Log detailed validation errors for debugging."""
    # ctx may contain non-serializable objects
    sanitized_errors = []
    for error in exc.errors():
        sanitized = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    # Bodies can carry API keys and codes, so only locations are logged
    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=[{"type": e["type"], "loc": e["loc"]} for e in sanitized_errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": sanitized_errors},
    )


# Setup tracing
setup_tracing()
instrument_fastapi(app)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing. Service logs inside the request carry request_id."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    endpoint = request.url.path
    method = request.method

    with log_context(request_id=request_id):
        logger.info("request_started", method=method, path=endpoint)
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

        try:
            response = await call_next(request)
            duration = time.time() - start_time
            metrics.record_http_request(endpoint, method, response.status_code, duration)

            logger.info(
                "request_completed",
                method=method,
                path=endpoint,
                status_code=response.status_code,
                duration_seconds=duration,
            )
            return response
        except Exception as e:
            duration = time.time() - start_time
            metrics.record_http_request(endpoint, method, 500, duration)
            metrics.record_error(type(e).__name__, "http_request")

            logger.error(
                "request_failed",
                method=method,
                path=endpoint,
                error=str(e),
                duration_seconds=duration,
                exc_info=True,
            )
            raise
        finally:
            metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


app.include_router(router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus metrics in text exposition format."""
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "chatgate.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
