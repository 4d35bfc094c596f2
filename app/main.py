import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.responses import error_response
from app.api.routes import events, health, tickets
from app.config import settings
from app.logging import configure_logging

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect to Temporal once at startup when the pipeline runs as workflows."""
    app.state.temporal_client = None
    if settings.use_temporal:
        from app.worker import create_temporal_client

        app.state.temporal_client = await create_temporal_client()
        logger.info(
            "temporal_client_connected",
            address=settings.temporal_address,
            namespace=settings.temporal_namespace,
        )
    yield


app = FastAPI(
    title="Shopping List Capture API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url=None,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a request ID to every request and log one access line per request.

    The ID is bound into structlog context vars (appears in every log entry
    for the request) and echoed in the X-Request-ID response header.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "http_request",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", request.headers.get("X-Request-ID", ""))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Return ErrorResponse JSON for Pydantic validation errors."""
    messages = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}")
    return error_response(
        422,
        "validation_error",
        "; ".join(messages),
        headers={"X-Request-ID": _request_id(request)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return ErrorResponse JSON for unhandled exceptions.

    For the storage event endpoint this 500 is also the redelivery signal.
    """
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return error_response(
        500,
        "internal_error",
        "An unexpected error occurred",
        retryable=True,
        headers={"X-Request-ID": _request_id(request)},
    )


app.include_router(health.router)
app.include_router(tickets.router, prefix="/api/v1")
app.include_router(events.router, prefix="/api/v1")
