"""Fixed generic table template and table/index administration.

Every table created through the gateway shares one column layout, so the
query layer never needs per-table metadata. Identifiers are the only SQL
text built from request input; they are validated here and always quoted.

Reserved rows:
    id=1   schema version marker (c1 = VERSION_MARKER)
    id=100 system placeholder   (c1 = SYSTEM_RESERVE_MARKER)

User rows start at id 101. DuckDB has no AUTOINCREMENT, so each table gets
its own sequence starting at FIRST_USER_ID.
"""

import asyncio
import re
import uuid
from typing import Any

import structlog

from sqlgate import metrics
from sqlgate.config import settings
from sqlgate.database import StatementResult, Store

logger = structlog.get_logger()

VERSION_ROW_ID = 1
SYSTEM_RESERVE_ROW_ID = 100
FIRST_USER_ID = 101

VERSION_MARKER = "___basic_db_version"
SYSTEM_RESERVE_MARKER = "___systemReserve"

# (name, type) for every non-key column; id is defined per table
TABLE_COLUMNS: tuple[tuple[str, str], ...] = (
    ("c1", "VARCHAR(255)"),
    ("c2", "VARCHAR(255)"),
    ("c3", "VARCHAR(255)"),
    ("i1", "INTEGER"),
    ("i2", "INTEGER"),
    ("i3", "INTEGER"),
    ("d1", "DOUBLE"),
    ("d2", "DOUBLE"),
    ("d3", "DOUBLE"),
    ("t1", "TEXT"),
    ("t2", "TEXT"),
    ("t3", "TEXT"),
    ("v1", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP"),
    ("v2", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP"),
    ("v3", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP"),
)

DATA_COLUMNS = frozenset(name for name, _ in TABLE_COLUMNS)
ALL_COLUMNS = frozenset({"id"}) | DATA_COLUMNS

# Names owned by storage engines; never listed as user tables
RESERVED_TABLE_PREFIXES = ("sqlite_", "duckdb_", "pg_", "cf_")

# "tables" would be shadowed by the /api/tables route
RESERVED_TABLE_NAMES = frozenset({"tables"})

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


class InvalidIdentifierError(ValueError):
    """A table, index or column name is outside the safe vocabulary."""


def validate_table_name(name: str) -> str:
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        raise InvalidIdentifierError(f"Invalid table name: {name!r}")
    if name.lower() in RESERVED_TABLE_NAMES or name.lower().startswith(
        RESERVED_TABLE_PREFIXES
    ):
        raise InvalidIdentifierError(f"Table name is reserved: {name!r}")
    return name


def validate_index_name(name: str) -> str:
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        raise InvalidIdentifierError(f"Invalid index name: {name!r}")
    return name


def validate_column_name(name: str) -> str:
    if name not in ALL_COLUMNS:
        raise InvalidIdentifierError(f"Unknown column: {name!r}")
    return name


def quote(identifier: str) -> str:
    """Double-quote an already validated identifier."""
    return f'"{identifier}"'


def sequence_name(table_name: str) -> str:
    return f"{table_name}_id_seq"


def c1_index_name(table_name: str) -> str:
    return f"idx_{table_name}_c1"


def build_create_statements(
    table_name: str, c1_unique: bool = False, version_token: str | None = None
) -> list[tuple[str, list[Any] | None]]:
    """
    Build the ordered statements that create one table.

    Returns:
        List of (sql, params) pairs; params is None for statements without
        placeholders.
    """
    table_name = validate_table_name(table_name)
    table = quote(table_name)
    seq = sequence_name(table_name)

    col_defs = [f"id INTEGER PRIMARY KEY DEFAULT nextval('{seq}')"]
    for name, col_type in TABLE_COLUMNS:
        col_def = f"{name} {col_type}"
        if name == "c1" and c1_unique:
            col_def += " UNIQUE"
        col_defs.append(col_def)

    statements: list[tuple[str, list[Any] | None]] = [
        (f"CREATE SEQUENCE IF NOT EXISTS {quote(seq)} START {FIRST_USER_ID}", None),
        (f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(col_defs)})", None),
    ]

    # A UNIQUE constraint already gives c1 an index
    if not c1_unique:
        statements.append(
            (
                f"CREATE INDEX IF NOT EXISTS {quote(c1_index_name(table_name))} "
                f"ON {table}(c1)",
                None,
            )
        )

    statements.append(
        (
            f"INSERT OR IGNORE INTO {table} (id, c1, c2, i1, d1) VALUES (?, ?, ?, ?, ?)",
            [
                VERSION_ROW_ID,
                VERSION_MARKER,
                version_token or str(uuid.uuid4()),
                settings.db_version,
                settings.db_version,
            ],
        )
    )
    statements.append(
        (
            f"INSERT OR IGNORE INTO {table} (id, c1) VALUES (?, ?)",
            [SYSTEM_RESERVE_ROW_ID, SYSTEM_RESERVE_MARKER],
        )
    )
    return statements


async def create_table(
    store: Store, table_name: str, c1_unique: bool = False
) -> list[StatementResult]:
    """
    Create a fixed-schema table with its reserved rows.

    Statements run strictly in order and are not wrapped in a transaction.
    A failing statement does not stop the ones after it; the caller gets one
    result per statement and decides what a partial failure means.
    """
    statements = build_create_statements(table_name, c1_unique)

    logger.info(
        "create_table_start",
        table_name=table_name,
        c1_unique=c1_unique,
        statement_count=len(statements),
    )

    results = []
    for sql, params in statements:
        result = await asyncio.to_thread(
            store.run, sql, params, operation="create_table"
        )
        results.append(result)

    failed = [i for i, r in enumerate(results) if not r.success]
    if failed:
        logger.error(
            "create_table_partial_failure",
            table_name=table_name,
            failed_statements=failed,
        )
    else:
        logger.info("create_table_success", table_name=table_name)
    return results


async def drop_table(store: Store, table_name: str) -> list[StatementResult]:
    """Drop a table and its id sequence; absent objects are not an error."""
    table_name = validate_table_name(table_name)
    statements = [
        f"DROP TABLE IF EXISTS {quote(table_name)}",
        f"DROP SEQUENCE IF EXISTS {quote(sequence_name(table_name))}",
    ]
    results = []
    for sql in statements:
        results.append(
            await asyncio.to_thread(store.run, sql, None, operation="drop_table")
        )
    logger.info(
        "drop_table_completed",
        table_name=table_name,
        success=all(r.success for r in results),
    )
    return results


async def drop_index(
    store: Store, table_name: str, index_name: str
) -> StatementResult:
    """
    Drop an index by name.

    Index names are global in the store, so table_name only scopes the
    request for validation and logging.
    """
    table_name = validate_table_name(table_name)
    index_name = validate_index_name(index_name)
    result = await asyncio.to_thread(
        store.run,
        f"DROP INDEX IF EXISTS {quote(index_name)}",
        None,
        operation="drop_index",
    )
    logger.info(
        "drop_index_completed",
        table_name=table_name,
        index_name=index_name,
        success=result.success,
    )
    return result


async def list_tables(store: Store) -> list[str]:
    """List user tables, skipping engine-owned names."""
    rows = await asyncio.to_thread(
        store.all,
        "SELECT table_name FROM information_schema.tables "
        "WHERE table_schema = 'main' AND table_type = 'BASE TABLE' "
        "ORDER BY table_name",
        None,
        operation="list_tables",
    )
    tables = [
        row["table_name"]
        for row in rows
        if not row["table_name"].lower().startswith(RESERVED_TABLE_PREFIXES)
    ]
    metrics.TABLES_TOTAL.set(len(tables))
    return tables
