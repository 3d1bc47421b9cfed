"""DuckDB store - the prepared-statement collaborator behind the gateway.

One DuckDB database (a file or ``:memory:``) is opened at startup. Every
statement runs on its own cursor, which DuckDB backs with a separate
connection to the same database instance, so statements issued from
different worker threads never share connection state.

Two execution styles are offered:

- ``all()`` returns a row set as a list of dicts and raises ``StoreError``
  when the statement fails.
- ``run()`` executes a mutation and returns a ``StatementResult``; failures
  are reported in the result instead of being raised, so multi-statement
  callers can report per-statement outcomes.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Generator

import duckdb
import structlog

from sqlgate import metrics
from sqlgate.config import settings

logger = structlog.get_logger()


class StoreError(RuntimeError):
    """A statement failed inside the store.

    ``operation`` names what the gateway was doing (e.g. ``count_records``)
    and ``details`` carries the raw engine message for diagnostics.
    """

    def __init__(self, operation: str, details: str):
        super().__init__(f"{operation} failed: {details}")
        self.operation = operation
        self.details = details


@dataclass
class StatementResult:
    """Outcome of a single mutation statement."""

    success: bool
    changes: int = 0
    last_row_id: int | None = None
    duration_ms: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Store:
    """
    Handle to the DuckDB database used by all requests.

    Usage:
        store = Store(":memory:")
        store.open()
        store.run('CREATE TABLE "t" (id INTEGER)')
        rows = store.all('SELECT * FROM "t" WHERE id = ?', [1])
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._conn_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> None:
        """Open the database, creating its parent directory if needed."""
        with self._conn_lock:
            if self._conn is not None:
                return
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            conn = duckdb.connect(self.path)
            conn.execute(f"SET threads = {settings.duckdb_threads}")
            conn.execute(f"SET memory_limit = '{settings.duckdb_memory_limit}'")
            self._conn = conn
        logger.info("store_opened", path=self.path)

    def close(self) -> None:
        with self._conn_lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
        logger.info("store_closed", path=self.path)

    @contextmanager
    def cursor(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """
        Get a cursor bound to the shared database.

        Usage:
            with store.cursor() as cur:
                cur.execute("SELECT 1")
        """
        if self._conn is None:
            raise RuntimeError("Store is not open")
        cur = self._conn.cursor()
        try:
            yield cur
        finally:
            cur.close()

    def all(
        self, query: str, params: list | None = None, operation: str = "query"
    ) -> list[dict[str, Any]]:
        """Execute a read query and return all rows as dicts."""
        start_time = time.perf_counter()
        status = "success"
        try:
            with self.cursor() as cur:
                if params:
                    cur.execute(query, params)
                else:
                    cur.execute(query)
                if cur.description is None:
                    return []
                columns = [desc[0] for desc in cur.description]
                return [dict(zip(columns, row)) for row in cur.fetchall()]
        except duckdb.Error as e:
            status = "error"
            logger.error(
                "store_query_failed", operation=operation, query=query, error=str(e)
            )
            raise StoreError(operation, str(e)) from e
        finally:
            metrics.STATEMENTS_TOTAL.labels(operation=operation, status=status).inc()
            metrics.STATEMENT_DURATION.labels(operation=operation).observe(
                time.perf_counter() - start_time
            )

    def one(
        self, query: str, params: list | None = None, operation: str = "query"
    ) -> dict[str, Any] | None:
        """Execute a query and return the first row, if any."""
        rows = self.all(query, params, operation=operation)
        return rows[0] if rows else None

    def run(
        self,
        query: str,
        params: list | None = None,
        operation: str = "execute",
        returning: str | None = None,
    ) -> StatementResult:
        """
        Execute a mutation and describe its outcome.

        Args:
            query: SQL with ``?`` placeholders
            params: Values bound to the placeholders
            operation: Label used for logs and metrics
            returning: Column named in a ``RETURNING`` clause; its value from
                the last returned row becomes ``last_row_id``

        Returns:
            StatementResult; ``success`` is False when the engine rejected
            the statement and ``error`` holds its message.
        """
        start_time = time.perf_counter()
        try:
            with self.cursor() as cur:
                if params:
                    cur.execute(query, params)
                else:
                    cur.execute(query)
                rows = cur.fetchall() if cur.description is not None else []
                columns = [desc[0] for desc in cur.description or []]
        except duckdb.Error as e:
            duration = time.perf_counter() - start_time
            metrics.STATEMENTS_TOTAL.labels(operation=operation, status="error").inc()
            metrics.STATEMENT_DURATION.labels(operation=operation).observe(duration)
            logger.error(
                "store_statement_failed", operation=operation, query=query, error=str(e)
            )
            return StatementResult(
                success=False, duration_ms=round(duration * 1000, 3), error=str(e)
            )

        duration = time.perf_counter() - start_time
        metrics.STATEMENTS_TOTAL.labels(operation=operation, status="success").inc()
        metrics.STATEMENT_DURATION.labels(operation=operation).observe(duration)

        changes = 0
        last_row_id = None
        if returning is not None and returning in columns:
            changes = len(rows)
            if rows:
                last_row_id = rows[-1][columns.index(returning)]
        elif len(rows) == 1 and len(rows[0]) == 1 and isinstance(rows[0][0], int):
            # DML without RETURNING yields a single "Count" row
            changes = rows[0][0]

        logger.debug(
            "store_statement_executed",
            operation=operation,
            changes=changes,
            duration_ms=round(duration * 1000, 3),
        )
        return StatementResult(
            success=True,
            changes=changes,
            last_row_id=last_row_id,
            duration_ms=round(duration * 1000, 3),
        )


def create_store() -> Store:
    """Build and open the store described by the current settings."""
    store = Store(settings.database_path)
    store.open()
    return store
