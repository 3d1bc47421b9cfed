"""Parameterized CRUD and metadata queries against fixed-schema tables.

Table and column names are checked against the schema vocabulary and quoted;
every value travels as a bound parameter. Each store call is dispatched to a
worker thread so the event loop stays free while DuckDB works.
"""

import asyncio
from typing import Any

import structlog

from sqlgate.database import StatementResult, Store
from sqlgate.schema import (
    FIRST_USER_ID,
    SYSTEM_RESERVE_ROW_ID,
    quote,
    sequence_name,
    validate_column_name,
    validate_table_name,
)

logger = structlog.get_logger()

SCALAR_TYPES = (str, int, float, bool, type(None))


def _validate_fields(
    fields: dict[str, Any], allow_id: bool, empty_message: str
) -> list[str]:
    """Check a column->value payload and return its column names in order."""
    if not fields:
        raise ValueError(empty_message)

    columns = []
    for column, value in fields.items():
        validate_column_name(column)
        if column == "id":
            if not allow_id:
                raise ValueError("The id column cannot be updated.")
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError("id must be an integer.")
            if value < FIRST_USER_ID:
                raise ValueError(
                    f"Record ids below {FIRST_USER_ID} are reserved for system rows."
                )
        if not isinstance(value, SCALAR_TYPES):
            raise ValueError(f"Value for column {column!r} must be a scalar.")
        columns.append(column)
    return columns


def _id_range(
    min_id: int | None, max_id: int | None
) -> tuple[list[str], list[Any]]:
    """Exclusive id bounds shared by listing and counting."""
    conditions: list[str] = []
    params: list[Any] = []
    if min_id is not None:
        conditions.append("id > ?")
        params.append(min_id)
    if max_id is not None:
        conditions.append("id < ?")
        params.append(max_id)
    return conditions, params


def _next_id_expression(table: str) -> str:
    """
    Id for a row inserted without one.

    The sequence alone would hand out ids already taken by rows inserted
    with an explicit id, so the result is never below MAX(id) + 1.
    """
    return (
        f"GREATEST(nextval('{sequence_name(table)}'), "
        f"(SELECT COALESCE(MAX(id), {SYSTEM_RESERVE_ROW_ID}) + 1 FROM {quote(table)}))"
    )


async def insert(store: Store, table: str, fields: dict[str, Any]) -> StatementResult:
    """Insert one row; unspecified columns take their defaults."""
    table = validate_table_name(table)
    columns = _validate_fields(
        fields, allow_id=True, empty_message="No data provided for insertion."
    )
    values = ["?" for _ in columns]
    targets = [quote(c) for c in columns]
    if "id" not in fields:
        targets.insert(0, "id")
        values.insert(0, _next_id_expression(table))
    query = (
        f"INSERT INTO {quote(table)} ({', '.join(targets)}) "
        f"VALUES ({', '.join(values)}) RETURNING id"
    )
    result = await asyncio.to_thread(
        store.run,
        query,
        [fields[c] for c in columns],
        operation="insert_record",
        returning="id",
    )
    logger.info(
        "insert_record",
        table_name=table,
        columns=columns,
        success=result.success,
        record_id=result.last_row_id,
    )
    return result


async def get_all(store: Store, table: str) -> list[dict[str, Any]]:
    """Every row of the table in ascending id order."""
    table = validate_table_name(table)
    return await asyncio.to_thread(
        store.all,
        f"SELECT * FROM {quote(table)} ORDER BY id ASC",
        None,
        operation="get_all_records",
    )


async def get_by_id(store: Store, table: str, record_id: int) -> list[dict[str, Any]]:
    """Zero or one row; absence is an empty list, not an error."""
    table = validate_table_name(table)
    return await asyncio.to_thread(
        store.all,
        f"SELECT * FROM {quote(table)} WHERE id = ?",
        [record_id],
        operation="get_record_by_id",
    )


async def get_by_c1(store: Store, table: str, value: str) -> list[dict[str, Any]]:
    table = validate_table_name(table)
    return await asyncio.to_thread(
        store.all,
        f"SELECT * FROM {quote(table)} WHERE c1 = ? ORDER BY id ASC",
        [value],
        operation="get_records_by_c1",
    )


async def list_records(
    store: Store,
    table: str,
    min_id: int | None = None,
    max_id: int | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[dict[str, Any]]:
    """
    Filtered, paginated scan.

    Bounds are exclusive (id > min_id, id < max_id). Rows are always ordered
    by id so that limit/offset pages are stable across calls. No limit means
    no upper bound on the page size.
    """
    table = validate_table_name(table)
    conditions, params = _id_range(min_id, max_id)

    query = f"SELECT * FROM {quote(table)}"
    if conditions:
        query += f" WHERE {' AND '.join(conditions)}"
    query += " ORDER BY id ASC"

    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    if offset is not None:
        query += " OFFSET ?"
        params.append(offset)

    return await asyncio.to_thread(
        store.all, query, params, operation="list_records"
    )


async def update(
    store: Store, table: str, record_id: int, fields: dict[str, Any]
) -> StatementResult:
    """
    Update columns of one row.

    ``changes == 0`` is reported as-is; it does not mean the row is missing.
    """
    table = validate_table_name(table)
    columns = _validate_fields(
        fields, allow_id=False, empty_message="No fields provided for update."
    )
    set_clause = ", ".join(f"{quote(c)} = ?" for c in columns)
    params = [fields[c] for c in columns] + [record_id]
    result = await asyncio.to_thread(
        store.run,
        f"UPDATE {quote(table)} SET {set_clause} WHERE id = ?",
        params,
        operation="update_record",
    )
    logger.info(
        "update_record",
        table_name=table,
        record_id=record_id,
        columns=columns,
        success=result.success,
        changes=result.changes,
    )
    return result


async def delete(store: Store, table: str, record_id: int) -> StatementResult:
    table = validate_table_name(table)
    result = await asyncio.to_thread(
        store.run,
        f"DELETE FROM {quote(table)} WHERE id = ?",
        [record_id],
        operation="delete_record",
    )
    logger.info(
        "delete_record",
        table_name=table,
        record_id=record_id,
        success=result.success,
        changes=result.changes,
    )
    return result


async def count(
    store: Store, table: str, min_id: int | None = None, max_id: int | None = None
) -> int:
    table = validate_table_name(table)
    conditions, params = _id_range(min_id, max_id)
    query = f"SELECT COUNT(id) AS count FROM {quote(table)}"
    if conditions:
        query += f" WHERE {' AND '.join(conditions)}"
    row = await asyncio.to_thread(store.one, query, params, operation="count_records")
    return int(row["count"]) if row else 0


async def max_id(store: Store, table: str) -> int | None:
    """Largest id in the table, or None when the table has no rows."""
    table = validate_table_name(table)
    row = await asyncio.to_thread(
        store.one,
        f"SELECT MAX(id) AS max_id FROM {quote(table)}",
        None,
        operation="get_max_id",
    )
    if row is None or row["max_id"] is None:
        return None
    return int(row["max_id"])
