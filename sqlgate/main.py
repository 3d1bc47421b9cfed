"""SQL Gateway application: wiring of logging, store lifecycle and routers."""

import logging
import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from sqlgate.config import settings
from sqlgate.database import create_store
from sqlgate.envelope import FAILURE, respond
from sqlgate.metrics import ERROR_COUNT
from sqlgate.middleware.metrics import MetricsMiddleware, normalize_path
from sqlgate.routers import gateway, metrics

DESCRIPTION = """
Generic HTTP-to-SQL gateway.

Tables created here share one fixed column layout (`c1..c3` strings,
`i1..i3` integers, `d1..d3` doubles, `t1..t3` text, `v1..v3` timestamps) and
are read and written over REST:

- `GET /api/tables`, `DELETE /api/tables/{name}`, `POST /api/create-table`
- `GET|POST /api/{table}/records`, `GET|PUT|DELETE /api/{table}/records/{id}`
- `GET /api/{table}/count`, `GET /api/{table}/max_id`
- `DELETE /api/{table}/index/{index}`

Send `Authorization: Bearer <token>`: the write token unlocks everything,
the read-only token only GET operations. Every answer is an envelope
`{"code": 0|1, "message"?: str, "data"?: any}`.
"""


def setup_logging(debug: bool = settings.debug) -> None:
    """Configure structlog: JSON lines in production, console output in debug."""
    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
    level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bind a store for the app's lifetime unless the embedder supplied one."""
    opened_here = app.state.store is None
    logger.info(
        "gateway_starting",
        version=settings.api_version,
        database_path=settings.database_path,
        store_supplied=not opened_here,
        write_tier_enabled=bool(settings.write_token),
        read_tier_enabled=bool(settings.read_only_token),
    )

    if opened_here:
        try:
            app.state.store = create_store()
        except Exception as e:
            logger.error("store_open_failed", error=str(e), exc_info=True)
            raise

    try:
        yield
    finally:
        if opened_here and app.state.store is not None:
            app.state.store.close()
            app.state.store = None
        logger.info("gateway_stopped")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
)

# Bound by lifespan, or directly by tests and embedding applications
app.state.store = None

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=gateway.GATEWAY_METHODS,
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(MetricsMiddleware)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """Bind a request id to every log line of the request and echo it back."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id, method=request.method, path=request.url.path
    )

    started = time.perf_counter()
    logger.info("request_started")
    response = await call_next(request)
    logger.info(
        "request_completed",
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )

    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Last-resort handler: anything that escapes a router becomes an envelope 500."""
    error_type = type(exc).__name__
    ERROR_COUNT.labels(type=error_type, endpoint=normalize_path(request.url.path)).inc()
    logger.error("unhandled_exception", error=str(exc), error_type=error_type, exc_info=True)

    details = {"details": str(exc)} if settings.debug else None
    return respond(FAILURE, "Internal server error.", details, 500)


# /metrics must be registered ahead of the gateway's catch-all path
app.include_router(metrics.router)
app.include_router(gateway.router)


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("sqlgate.main:app", host=settings.host, port=settings.port, reload=settings.debug)


if __name__ == "__main__":
    run()
