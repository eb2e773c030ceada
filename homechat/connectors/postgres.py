"""
PostgreSQL Query Store

Async read-only query store on asyncpg.

Features:
- Connection pooling with asyncpg
- Generated queries run in a read-only transaction with a statement timeout
- Result rows capped and stringified for prompt formatting
- Schema introspection from information_schema
- Column hints and full data dump for prompt context

Usage:
    store = PostgresQueryStore(url="postgresql://me@localhost/home")
    await store.connect()

    result = await store.read_only_query(
        "SELECT SUM(cost_cents) FROM service_log WHERE category = 'HVAC'"
    )

    await store.close()
"""

import logging
import time

import asyncpg

from homechat.connectors.base import (
    HINT_COLUMNS,
    MAX_QUERY_ROWS,
    BaseQueryStore,
    ColumnInfo,
    ConnectionError,
    QueryError,
    QueryResult,
    SchemaError,
    format_dump_section,
    stringify,
)
from homechat.connectors.readonly import is_safe_identifier, validate_select

logger = logging.getLogger(__name__)

_HINT_VALUE_LIMIT = 50

# Server-side statement_timeout fires first; the client timeout is a backstop.
_CLIENT_TIMEOUT_SLACK = 5

# Failures below the SQL layer: dropped connections, sockets, client timeouts.
_DRIVER_ERRORS = (asyncpg.InterfaceError, OSError, TimeoutError)


class PostgresQueryStore(BaseQueryStore):
    """
    PostgreSQL query store using asyncpg.

    Only validated SELECT statements are executed, always inside a read-only
    transaction.
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 5,
        timeout: int = 10,
        max_rows: int = MAX_QUERY_ROWS,
        dump_max_rows: int = 500,
        schema: str = "public",
    ):
        """
        Initialize store.

        Args:
            url: PostgreSQL connection URL
            pool_size: Maximum pool size
            timeout: Statement timeout in seconds
            max_rows: Maximum rows returned by read_only_query
            dump_max_rows: Maximum rows per table in data_dump
            schema: Schema holding the user tables
        """
        super().__init__(timeout=timeout, max_rows=max_rows)
        self.url = url
        self.pool_size = pool_size
        self.dump_max_rows = dump_max_rows
        self.schema = schema
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        if self._pool is not None:
            logger.debug("Already connected, skipping connection")
            return

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.url,
                min_size=1,
                max_size=self.pool_size,
                command_timeout=self.timeout + _CLIENT_TIMEOUT_SLACK,
            )
        except (asyncpg.PostgresError, *_DRIVER_ERRORS) as e:
            logger.error(f"PostgreSQL connection failed: {e}")
            raise ConnectionError(f"Failed to connect to PostgreSQL: {e}") from e

        logger.info("Connected to PostgreSQL query store", extra={"schema": self.schema})

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("PostgreSQL query store closed")

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise ConnectionError("Not connected to database. Call connect() first.")
        return self._pool

    async def read_only_query(self, sql: str) -> QueryResult:
        """
        Validate and execute a single SELECT statement.

        Args:
            sql: Statement produced by SQL generation

        Returns:
            QueryResult with at most max_rows stringified rows

        Raises:
            QueryError: If validation or execution fails
            ConnectionError: If not connected
        """
        statement = validate_select(sql)
        pool = self._require_pool()
        start_time = time.perf_counter()

        try:
            async with pool.acquire() as conn:
                async with conn.transaction(readonly=True):
                    await conn.execute(
                        f"SET LOCAL statement_timeout = {int(self.timeout * 1000)}"
                    )
                    prepared = await conn.prepare(statement)
                    columns = [attr.name for attr in prepared.get_attributes()]
                    cursor = await prepared.cursor()
                    records = await cursor.fetch(self.max_rows)
        except (asyncpg.QueryCanceledError, TimeoutError) as e:
            logger.warning(f"Query timed out after {self.timeout}s: {statement[:100]}")
            raise QueryError(f"query timeout ({self.timeout}s)") from e
        except asyncpg.PostgresError as e:
            logger.warning(f"Query failed: {e}", extra={"sql": statement[:200]})
            raise QueryError(f"execute query: {e}") from e
        except _DRIVER_ERRORS as e:
            logger.warning(f"Query failed: {e!r}", extra={"sql": statement[:200]})
            raise QueryError(f"execute query: {str(e) or type(e).__name__}") from e

        rows = [[stringify(value) for value in record.values()] for record in records]
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(f"Query executed in {elapsed_ms:.2f}ms, returned {len(rows)} rows")
        return QueryResult(columns=columns, rows=rows, execution_time_ms=elapsed_ms)

    async def table_names(self) -> list[str]:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                records = await conn.fetch(
                    """
                    SELECT table_name
                    FROM information_schema.tables
                    WHERE table_schema = $1
                    AND table_type = 'BASE TABLE'
                    ORDER BY table_name
                    """,
                    self.schema,
                )
        except (asyncpg.PostgresError, *_DRIVER_ERRORS) as e:
            raise SchemaError(f"Failed to list tables: {e}") from e
        return [record["table_name"] for record in records]

    async def table_columns(self, table: str) -> list[ColumnInfo]:
        if not is_safe_identifier(table):
            raise SchemaError(f"invalid table name: {table!r}")
        pool = self._require_pool()

        try:
            async with pool.acquire() as conn:
                columns = await conn.fetch(
                    """
                    SELECT column_name, data_type, is_nullable, column_default
                    FROM information_schema.columns
                    WHERE table_schema = $1 AND table_name = $2
                    ORDER BY ordinal_position
                    """,
                    self.schema,
                    table,
                )
                pk_rows = await conn.fetch(
                    """
                    SELECT kcu.column_name
                    FROM information_schema.table_constraints AS tc
                    JOIN information_schema.key_column_usage AS kcu
                        ON tc.constraint_name = kcu.constraint_name
                        AND tc.table_schema = kcu.table_schema
                    WHERE tc.constraint_type = 'PRIMARY KEY'
                    AND tc.table_schema = $1
                    AND tc.table_name = $2
                    """,
                    self.schema,
                    table,
                )
        except (asyncpg.PostgresError, *_DRIVER_ERRORS) as e:
            raise SchemaError(f"Failed to describe {table}: {e}") from e

        pk_columns = {row["column_name"] for row in pk_rows}
        return [
            ColumnInfo(
                name=col["column_name"],
                data_type=col["data_type"],
                is_nullable=col["is_nullable"] == "YES",
                default_value=col["column_default"],
                is_primary_key=col["column_name"] in pk_columns,
            )
            for col in columns
        ]

    async def column_hints(self) -> str:
        """
        List distinct stored values of label columns.

        Tables that fail to answer are skipped; soft-deleted rows are ignored
        where the table has a deleted_at column.

        Raises:
            SchemaError: If the schema cannot be read or the connection fails
        """
        schema = await self.describe_schema()
        pool = self._require_pool()
        lines: list[str] = []

        try:
            async with pool.acquire() as conn:
                for table, columns in schema.items():
                    names = {col.name for col in columns}
                    live_filter = "WHERE deleted_at IS NULL" if "deleted_at" in names else ""
                    for column in HINT_COLUMNS:
                        if column not in names:
                            continue
                        query = (
                            f'SELECT DISTINCT "{column}"::text AS value '
                            f'FROM "{self.schema}"."{table}" '
                            f'{live_filter} ORDER BY 1 LIMIT {_HINT_VALUE_LIMIT}'
                        )
                        try:
                            records = await conn.fetch(query)
                        except asyncpg.PostgresError as e:
                            logger.debug(f"Skipping hints for {table}.{column}: {e}")
                            continue
                        values = [record["value"] for record in records if record["value"]]
                        if values:
                            lines.append(f"- {table} {column} values: {', '.join(values)}")
        except (asyncpg.PostgresError, *_DRIVER_ERRORS) as e:
            raise SchemaError(f"Failed to read column hints: {str(e) or type(e).__name__}") from e

        return "\n".join(lines) + "\n" if lines else ""

    async def data_dump(self) -> str:
        """
        Render live rows of every table for the fallback prompt.

        Raises:
            SchemaError: If tables cannot be listed
        """
        pool = self._require_pool()
        sections: list[str] = []

        for table in await self.table_names():
            if not is_safe_identifier(table):
                continue
            try:
                async with pool.acquire() as conn:
                    records = await conn.fetch(
                        f'SELECT * FROM "{self.schema}"."{table}" LIMIT {self.dump_max_rows}'
                    )
            except (asyncpg.PostgresError, *_DRIVER_ERRORS) as e:
                logger.warning(f"Skipping {table} in data dump: {e}")
                continue

            if not records:
                continue
            columns = list(records[0].keys())
            rows = [
                [stringify(value) for value in record.values()]
                for record in records
                if record.get("deleted_at") is None
            ]
            sections.append(format_dump_section(table, columns, rows))

        return "".join(sections)
