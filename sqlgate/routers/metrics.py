"""Scrape endpoint for the gateway's Prometheus registry.

Gauges that describe the store (table count, file size) are refreshed on
every scrape; request and statement metrics are updated as traffic flows.
"""

import asyncio

import duckdb
import structlog
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from sqlgate import schema
from sqlgate.config import settings
from sqlgate.database import Store, StoreError
from sqlgate.metrics import STORE_SIZE_BYTES, set_service_info

logger = structlog.get_logger()
router = APIRouter(tags=["metrics"])


async def collect_store_metrics(store: Store | None) -> None:
    """Refresh store gauges; a failing probe leaves the previous values."""
    db_file = settings.database_file
    if db_file is not None and db_file.exists():
        size = await asyncio.to_thread(lambda: db_file.stat().st_size)
        STORE_SIZE_BYTES.set(size)

    if store is None or not store.is_open:
        return
    try:
        # Sets TABLES_TOTAL as a side effect
        await schema.list_tables(store)
    except StoreError as e:
        logger.warning("metrics_store_probe_failed", error=e.details)


@router.get(
    "/metrics",
    response_class=PlainTextResponse,
    summary="Prometheus scrape endpoint",
    description="Current gateway metrics in the Prometheus text format. No credential needed.",
)
async def get_metrics(request: Request):
    set_service_info(version=settings.api_version, duckdb_version=duckdb.__version__)
    await collect_store_metrics(getattr(request.app.state, "store", None))

    return PlainTextResponse(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
