"""Request intent: what a request asks the gateway to do, before any SQL.

``resolve_route`` maps (method, path segments) to an ``Intent`` carrying the
operation and the identifiers found in the path. Query-string filters and
the body are attached later by the router, after the permission check, so
that a caller without the right tier learns nothing about input validation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class Operation(str, Enum):
    CREATE_TABLE = "createTable"
    DROP_TABLE = "dropTable"
    DROP_INDEX = "dropIndex"
    LIST_TABLES = "listTables"
    INSERT = "insert"
    GET_BY_ID = "getById"
    GET_BY_C1 = "getByC1"
    LIST = "list"
    UPDATE = "update"
    DELETE = "delete"
    COUNT = "count"
    MAX_ID = "maxId"


class Permission(str, Enum):
    READ = "read"
    WRITE = "write"


# Required tier and the phrase used in 403 messages
OPERATION_PERMISSIONS: dict[Operation, tuple[Permission, str]] = {
    Operation.LIST_TABLES: (Permission.READ, "list tables"),
    Operation.DROP_TABLE: (Permission.WRITE, "drop tables"),
    Operation.CREATE_TABLE: (Permission.WRITE, "create tables"),
    Operation.DROP_INDEX: (Permission.WRITE, "drop indexes"),
    Operation.COUNT: (Permission.READ, "count records"),
    Operation.MAX_ID: (Permission.READ, "get max ID"),
    Operation.INSERT: (Permission.WRITE, "insert records"),
    Operation.GET_BY_ID: (Permission.READ, "read records"),
    Operation.GET_BY_C1: (Permission.READ, "read records"),
    Operation.LIST: (Permission.READ, "read records"),
    Operation.UPDATE: (Permission.WRITE, "update records"),
    Operation.DELETE: (Permission.WRITE, "delete records"),
}

INVALID_PATH_MESSAGE = (
    "Invalid API path. Expected /api/tables, /api/create-table, "
    "/api/:tableName/records, /api/:tableName/count, /api/:tableName/max_id "
    "or /api/:tableName/index/:indexName."
)


class RouteError(Exception):
    """The request cannot be mapped to an operation."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass
class Intent:
    operation: Operation
    table_name: str | None = None
    record_id: int | None = None
    raw_record_id: str | None = None
    index_name: str | None = None
    min_id: int | None = None
    max_id: int | None = None
    limit: int | None = None
    offset: int | None = None
    c1: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def permission(self) -> Permission:
        return OPERATION_PERMISSIONS[self.operation][0]

    @property
    def forbidden_message(self) -> str:
        tier, action = OPERATION_PERMISSIONS[self.operation]
        return f"Forbidden: {tier.value.capitalize()} access required to {action}."


def split_path(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


def _method_not_allowed() -> RouteError:
    return RouteError(405, "Method not allowed.")


def parse_int(name: str, raw: str, minimum: int | None = None) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise RouteError(400, f"{name} must be an integer.") from None
    if minimum is not None and value < minimum:
        raise RouteError(400, f"{name} must be >= {minimum}.")
    return value


def resolve_route(method: str, segments: list[str]) -> Intent:
    """
    Map an API path (segments after the prefix) and method to an Intent.

    Raises:
        RouteError: 404 for unknown path shapes, 405 for a known shape with
            a method it does not accept
    """
    method = method.upper()
    count = len(segments)

    if count == 0:
        raise RouteError(404, INVALID_PATH_MESSAGE)

    head = segments[0]

    if head == "tables":
        if count == 1:
            if method != "GET":
                raise _method_not_allowed()
            return Intent(Operation.LIST_TABLES)
        if count == 2:
            if method != "DELETE":
                raise _method_not_allowed()
            return Intent(Operation.DROP_TABLE, table_name=segments[1])
        raise RouteError(404, INVALID_PATH_MESSAGE)

    if head == "create-table":
        if count != 1:
            raise RouteError(404, INVALID_PATH_MESSAGE)
        if method != "POST":
            raise _method_not_allowed()
        return Intent(Operation.CREATE_TABLE)

    if count < 2:
        raise RouteError(404, INVALID_PATH_MESSAGE)

    table_name, resource = segments[0], segments[1]

    if resource in ("count", "max_id") and count == 2:
        if method != "GET":
            raise _method_not_allowed()
        operation = Operation.COUNT if resource == "count" else Operation.MAX_ID
        return Intent(operation, table_name=table_name)

    if resource == "index" and count == 3:
        if method != "DELETE":
            raise _method_not_allowed()
        return Intent(Operation.DROP_INDEX, table_name=table_name, index_name=segments[2])

    if resource == "records" and count == 2:
        if method == "POST":
            return Intent(Operation.INSERT, table_name=table_name)
        if method == "GET":
            # Narrowed to getByC1 or list once the query string is known
            return Intent(Operation.LIST, table_name=table_name)
        if method == "PUT":
            return Intent(Operation.UPDATE, table_name=table_name)
        if method == "DELETE":
            return Intent(Operation.DELETE, table_name=table_name)
        raise _method_not_allowed()

    if resource == "records" and count == 3:
        operation = {
            "GET": Operation.GET_BY_ID,
            "PUT": Operation.UPDATE,
            "DELETE": Operation.DELETE,
        }.get(method)
        if operation is None:
            raise _method_not_allowed()
        # The raw id is parsed after the permission check
        return Intent(operation, table_name=table_name, raw_record_id=segments[2])

    raise RouteError(404, INVALID_PATH_MESSAGE)


def apply_query(intent: Intent, query: Mapping[str, str]) -> Intent:
    """
    Attach the record id and query-string filters to a resolved intent.

    For GET on records the selector precedence is: path id, then ``c1``,
    then range/pagination parameters, then the full scan.
    """
    if intent.raw_record_id is not None:
        intent.record_id = parse_int("Record ID", intent.raw_record_id)

    if intent.operation == Operation.GET_BY_ID:
        return intent

    if intent.operation == Operation.LIST:
        if "c1" in query:
            intent.operation = Operation.GET_BY_C1
            intent.c1 = query["c1"]
            return intent
        if "min_id" in query:
            intent.min_id = parse_int("min_id", query["min_id"])
        if "max_id" in query:
            intent.max_id = parse_int("max_id", query["max_id"])
        if "limit" in query:
            intent.limit = parse_int("limit", query["limit"], minimum=0)
        if "offset" in query:
            intent.offset = parse_int("offset", query["offset"], minimum=0)
        return intent

    if intent.operation == Operation.COUNT:
        if "min_id" in query:
            intent.min_id = parse_int("min_id", query["min_id"])
        if "max_id" in query:
            intent.max_id = parse_int("max_id", query["max_id"])

    return intent


def has_record_filters(intent: Intent) -> bool:
    return any(
        value is not None
        for value in (intent.min_id, intent.max_id, intent.limit, intent.offset)
    )
