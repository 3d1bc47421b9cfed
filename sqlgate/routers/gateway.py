"""Gateway router: one entry point for every /api request.

Request flow:
1. Store availability check (500 when no store is bound)
2. Authorization header classification (401)
3. API prefix check (welcome payload for anything outside the prefix)
4. Route resolution into an Intent (404 unknown path, 405 wrong method)
5. Permission tier check for the resolved operation (403)
6. Query string and body parsing (400)
7. Dispatch to the operation handler, which talks to the store

Every outcome, including store failures, is answered through ``respond`` so
all responses share the ``{code, message, data}`` envelope.
"""

from typing import Any, Awaitable, Callable

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from sqlgate import queries, schema
from sqlgate.auth import Access, authorize
from sqlgate.config import settings
from sqlgate.database import StoreError, Store
from sqlgate.envelope import FAILURE, SUCCESS, respond
from sqlgate.intent import (
    OPERATION_PERMISSIONS,
    Intent,
    Operation,
    Permission,
    RouteError,
    apply_query,
    has_record_filters,
    resolve_route,
    split_path,
)
from sqlgate.metrics import AUTH_FAILURES
from sqlgate.models.requests import TableCreate

logger = structlog.get_logger()
router = APIRouter(tags=["gateway"])

GATEWAY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

# Operations whose handler reads a JSON body
BODY_OPERATIONS = {Operation.CREATE_TABLE, Operation.INSERT, Operation.UPDATE}

Handler = Callable[[Store, Intent], Awaitable[JSONResponse]]


def _welcome() -> JSONResponse:
    return respond(SUCCESS, data={"message": f"Welcome to the {settings.api_title}!"})


def _permitted(access: Access, intent: Intent) -> bool:
    if intent.permission == Permission.WRITE:
        return access.can_write
    return access.can_read


async def _read_json_object(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise RouteError(400, "Invalid JSON body.") from None
    if not isinstance(body, dict):
        raise RouteError(400, "Request body must be a JSON object.")
    return body


def _first_error(results: list[Any]) -> str | None:
    for result in results:
        if not result.success:
            return result.error
    return None


# ----------------------------------------------------------------------------
# Table administration
# ----------------------------------------------------------------------------


async def _list_tables(store: Store, intent: Intent) -> JSONResponse:
    tables = await schema.list_tables(store)
    return respond(SUCCESS, data={"tables": tables})


async def _drop_table(store: Store, intent: Intent) -> JSONResponse:
    results = await schema.drop_table(store, intent.table_name)
    error = _first_error(results)
    if error is not None:
        return respond(FAILURE, "Failed to drop table.", {"details": error}, 500)
    return respond(
        SUCCESS,
        data={
            "message": f"Table '{intent.table_name}' dropped successfully.",
            "results": [r.to_dict() for r in results],
        },
    )


async def _create_table(store: Store, intent: Intent) -> JSONResponse:
    try:
        body = TableCreate.model_validate(intent.payload)
    except ValidationError as e:
        details = e.errors(include_url=False, include_context=False)
        return respond(FAILURE, "Invalid create-table body.", {"details": details}, 400)
    if not body.tableName:
        return respond(FAILURE, "tableName is required.", http_status=400)

    results = await schema.create_table(store, body.tableName, body.c1Unique)
    if all(r.success for r in results):
        return respond(
            SUCCESS,
            data={
                "message": f"Table '{body.tableName}' created successfully with initial data.",
                "results": [r.to_dict() for r in results],
            },
            http_status=201,
        )
    return respond(
        FAILURE,
        "Failed to create table or insert initial data. Some operations failed.",
        [r.to_dict() for r in results],
        500,
    )


async def _drop_index(store: Store, intent: Intent) -> JSONResponse:
    result = await schema.drop_index(store, intent.table_name, intent.index_name)
    if not result.success:
        return respond(FAILURE, "Failed to drop index.", {"details": result.error}, 500)
    return respond(
        SUCCESS,
        data={
            "message": (
                f"Index '{intent.index_name}' from table "
                f"'{intent.table_name}' dropped successfully."
            ),
            "results": result.to_dict(),
        },
    )


# ----------------------------------------------------------------------------
# Metadata
# ----------------------------------------------------------------------------


async def _count(store: Store, intent: Intent) -> JSONResponse:
    total = await queries.count(
        store, intent.table_name, min_id=intent.min_id, max_id=intent.max_id
    )
    return respond(SUCCESS, data={"count": total})


async def _max_id(store: Store, intent: Intent) -> JSONResponse:
    value = await queries.max_id(store, intent.table_name)
    return respond(SUCCESS, data={"max_id": value})


# ----------------------------------------------------------------------------
# Records
# ----------------------------------------------------------------------------


async def _insert(store: Store, intent: Intent) -> JSONResponse:
    result = await queries.insert(store, intent.table_name, intent.payload)
    if not result.success:
        return respond(
            FAILURE, "Failed to create record", {"details": result.error}, 500
        )
    return respond(
        SUCCESS,
        data={"message": "Record created successfully", "id": result.last_row_id},
        http_status=201,
    )


async def _get_by_id(store: Store, intent: Intent) -> JSONResponse:
    records = await queries.get_by_id(store, intent.table_name, intent.record_id)
    if not records:
        return respond(FAILURE, "Record not found.", [], 404)
    return respond(SUCCESS, data=records)


async def _get_by_c1(store: Store, intent: Intent) -> JSONResponse:
    records = await queries.get_by_c1(store, intent.table_name, intent.c1)
    return respond(SUCCESS, data=records)


async def _list(store: Store, intent: Intent) -> JSONResponse:
    if has_record_filters(intent):
        records = await queries.list_records(
            store,
            intent.table_name,
            min_id=intent.min_id,
            max_id=intent.max_id,
            limit=intent.limit,
            offset=intent.offset,
        )
    else:
        records = await queries.get_all(store, intent.table_name)
    return respond(SUCCESS, data=records)


async def _update(store: Store, intent: Intent) -> JSONResponse:
    result = await queries.update(
        store, intent.table_name, intent.record_id, intent.payload
    )
    if not result.success:
        return respond(
            FAILURE, "Failed to update record", {"details": result.error}, 500
        )
    return respond(
        SUCCESS,
        data={"message": "Record updated successfully", "changes": result.changes},
    )


async def _delete(store: Store, intent: Intent) -> JSONResponse:
    result = await queries.delete(store, intent.table_name, intent.record_id)
    if not result.success:
        return respond(
            FAILURE, "Failed to delete record", {"details": result.error}, 500
        )
    if result.changes == 0:
        return respond(FAILURE, "Record not found or already deleted.", http_status=404)
    return respond(SUCCESS, data={"message": "Record deleted successfully"})


HANDLERS: dict[Operation, Handler] = {
    Operation.LIST_TABLES: _list_tables,
    Operation.DROP_TABLE: _drop_table,
    Operation.CREATE_TABLE: _create_table,
    Operation.DROP_INDEX: _drop_index,
    Operation.COUNT: _count,
    Operation.MAX_ID: _max_id,
    Operation.INSERT: _insert,
    Operation.GET_BY_ID: _get_by_id,
    Operation.GET_BY_C1: _get_by_c1,
    Operation.LIST: _list,
    Operation.UPDATE: _update,
    Operation.DELETE: _delete,
}


async def dispatch(store: Store, intent: Intent, request: Request) -> JSONResponse:
    """Parse request input for an authorized intent and run its handler."""
    apply_query(intent, request.query_params)

    if intent.operation in (Operation.UPDATE, Operation.DELETE) and intent.record_id is None:
        return respond(
            FAILURE,
            f"Record ID is required for {intent.operation.value}.",
            http_status=400,
        )

    if intent.operation in BODY_OPERATIONS:
        intent.payload = await _read_json_object(request)

    return await HANDLERS[intent.operation](store, intent)


@router.api_route("/{path:path}", methods=GATEWAY_METHODS, include_in_schema=False)
async def gateway(request: Request, path: str) -> JSONResponse:
    """Single entry point translating HTTP requests into store operations."""
    store: Store | None = getattr(request.app.state, "store", None)
    if store is None or not store.is_open:
        logger.error("store_not_bound")
        return respond(FAILURE, "Database binding not found.", http_status=500)

    access = authorize(request.headers.get("Authorization"))
    if not access.authenticated:
        reason = "missing_header" if "Authorization" not in request.headers else "invalid_token"
        AUTH_FAILURES.labels(reason=reason).inc()
        return respond(FAILURE, access.message, http_status=401)

    segments = split_path(path)
    if not segments or segments[0] != settings.api_prefix or len(segments) == 1:
        return _welcome()

    try:
        intent = resolve_route(request.method, segments[1:])
    except RouteError as e:
        logger.info("route_rejected", path=request.url.path, status_code=e.status_code)
        return respond(FAILURE, e.message, http_status=e.status_code)

    structlog.contextvars.bind_contextvars(
        operation=intent.operation.value, table_name=intent.table_name
    )

    if not _permitted(access, intent):
        AUTH_FAILURES.labels(reason="forbidden").inc()
        logger.warning("auth_forbidden", required=intent.permission.value)
        return respond(FAILURE, intent.forbidden_message, http_status=403)

    try:
        return await dispatch(store, intent, request)
    except RouteError as e:
        return respond(FAILURE, e.message, http_status=e.status_code)
    except ValueError as e:
        # Includes InvalidIdentifierError for bad table/index/column names
        logger.info("request_rejected", error=str(e))
        return respond(FAILURE, str(e), http_status=400)
    except StoreError as e:
        _, action = OPERATION_PERMISSIONS[intent.operation]
        logger.error("operation_failed", error=e.details)
        return respond(
            FAILURE,
            f"Internal server error while trying to {action}.",
            {"details": e.details},
            500,
        )
