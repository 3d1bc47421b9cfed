"""HTTP instrumentation for the gateway.

Every request outside the scrape and docs endpoints is counted and timed
under a templated endpoint label, so one label value covers all tables and
records of the same route shape.
"""

import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from sqlgate.config import settings
from sqlgate.metrics import REQUEST_COUNT, REQUEST_DURATION, REQUEST_IN_FLIGHT

# Fixed second segments under the API prefix that are not table names
ADMIN_SEGMENTS = {"tables", "create-table"}

# Placeholder for the segment following a resource keyword
RESOURCE_PLACEHOLDERS = {"records": "{record_id}", "index": "{index_name}"}

UNINSTRUMENTED_PATHS = frozenset({"/metrics", "/docs", "/redoc", "/openapi.json"})


def normalize_path(path: str) -> str:
    """
    Template a request path into a low-cardinality endpoint label.

    Examples:
        /api/widgets/records/105 -> /api/{table_name}/records/{record_id}
        /api/widgets/index/idx_w -> /api/{table_name}/index/{index_name}
        /api/tables/widgets -> /api/tables/{table_name}
    """
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2 or parts[0] != settings.api_prefix:
        return "/" + "/".join(parts)

    head, rest = parts[1], parts[2:]
    if head in ADMIN_SEGMENTS:
        if head == "tables" and rest:
            rest = ["{table_name}"] + rest[1:]
        return "/" + "/".join([parts[0], head] + rest)

    templated = [parts[0], "{table_name}"]
    if rest:
        resource = rest[0]
        templated.append(resource)
        if len(rest) > 1:
            templated.append(RESOURCE_PLACEHOLDERS.get(resource, rest[1]))
            templated.extend(rest[2:])
    return "/" + "/".join(templated)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Feeds the sqlgate_requests_* metrics; failed requests count as 500."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in UNINSTRUMENTED_PATHS:
            return await call_next(request)

        method = request.method
        endpoint = normalize_path(request.url.path)
        in_flight = REQUEST_IN_FLIGHT.labels(method=method)

        in_flight.inc()
        started = time.perf_counter()
        status_code = "500"
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
            return response
        finally:
            REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(
                time.perf_counter() - started
            )
            REQUEST_COUNT.labels(
                method=method, endpoint=endpoint, status_code=status_code
            ).inc()
            in_flight.dec()
