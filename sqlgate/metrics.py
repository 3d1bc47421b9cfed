"""Prometheus metrics of the SQL Gateway.

Everything lives in the default registry and is exposed by ``GET /metrics``.
Metric names share the ``sqlgate_`` prefix.
"""

import platform
import time

from prometheus_client import Counter, Gauge, Histogram, Info, ProcessCollector

# Needs /proc; the default registry may already carry one
if platform.system() == "Linux":
    try:
        ProcessCollector()
    except ValueError:
        pass

# --- liveness ---------------------------------------------------------------

SERVICE_UP = Gauge("sqlgate_up", "1 while the gateway process is serving")
SERVICE_START_TIME = Gauge(
    "sqlgate_start_time_seconds", "Unix time at which the gateway process started"
)
SERVICE_INFO = Info("sqlgate_service", "Gateway and DuckDB versions")

SERVICE_START_TIME.set(time.time())
SERVICE_UP.set(1)

# --- HTTP (fed by MetricsMiddleware) -----------------------------------------

# endpoint is the templated path, see middleware.metrics.normalize_path
REQUEST_COUNT = Counter(
    "sqlgate_requests_total",
    "Gateway requests by method, templated endpoint and HTTP status",
    labelnames=("method", "endpoint", "status_code"),
)
REQUEST_DURATION = Histogram(
    "sqlgate_request_duration_seconds",
    "Wall time from request receipt to response, in seconds",
    labelnames=("method", "endpoint"),
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)
REQUEST_IN_FLIGHT = Gauge(
    "sqlgate_requests_in_flight",
    "Requests currently inside the gateway",
    labelnames=("method",),
)

ERROR_COUNT = Counter(
    "sqlgate_errors_total",
    "Exceptions that reached the global handler, by exception class",
    labelnames=("type", "endpoint"),
)
AUTH_FAILURES = Counter(
    "sqlgate_auth_failures_total",
    "Requests rejected by the authorizer",
    labelnames=("reason",),  # missing_header, invalid_token, forbidden
)

# --- store --------------------------------------------------------------------

# operation is the label passed to Store.all/Store.run, e.g. insert_record
STATEMENTS_TOTAL = Counter(
    "sqlgate_store_statements_total",
    "Statements executed against DuckDB, by operation and outcome",
    labelnames=("operation", "status"),
)
STATEMENT_DURATION = Histogram(
    "sqlgate_store_statement_duration_seconds",
    "DuckDB statement execution time in seconds",
    labelnames=("operation",),
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)
TABLES_TOTAL = Gauge(
    "sqlgate_tables_total",
    "User tables in the store at the last listing or scrape",
)
STORE_SIZE_BYTES = Gauge(
    "sqlgate_store_size_bytes",
    "Size of the DuckDB database file (0 for an in-memory store)",
)


def set_service_info(version: str, duckdb_version: str) -> None:
    SERVICE_INFO.info({"version": version, "duckdb_version": duckdb_version})
