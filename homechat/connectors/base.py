"""
Base Query Store

Abstract base class for the read-only query store the chat pipeline talks to.
Provides a consistent async interface for running validated SELECT queries
and for the schema and data introspection used to build prompts.

All stores must implement:
- connect() / close(): Manage the connection pool
- read_only_query(): Run a single validated SELECT and return stringified rows
- table_names() / table_columns(): Introspect the schema
- column_hints(): Distinct values of well-known label columns
- data_dump(): Full snapshot of live rows for the fallback prompt
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

MAX_QUERY_ROWS = 200

# Bookkeeping columns that carry no meaning for the model.
NOISE_COLUMNS = frozenset({"id", "created_at", "updated_at", "deleted_at", "data"})

# Columns whose distinct values help the model match user wording to stored values.
HINT_COLUMNS = ("name", "status", "category", "type", "severity")


# ============================================================================
# Data Models
# ============================================================================


class ColumnInfo(BaseModel):
    """Information about a table column."""

    name: str = Field(..., description="Column name")
    data_type: str = Field(..., description="Column data type")
    is_nullable: bool = Field(default=True, description="Whether column can be NULL")
    default_value: str | None = Field(None, description="Default value if any")
    is_primary_key: bool = Field(default=False, description="Is part of primary key")

    model_config = ConfigDict(frozen=True)


class QueryResult(BaseModel):
    """Result of a read-only query, with every value rendered as text."""

    columns: list[str] = Field(..., description="Column names")
    rows: list[list[str]] = Field(..., description="Rows of stringified values; NULL is ''")
    execution_time_ms: float = Field(default=0.0, description="Query execution time in ms")

    model_config = ConfigDict(frozen=True)

    @property
    def row_count(self) -> int:
        return len(self.rows)


class ConnectorError(Exception):
    """Base exception for query store errors."""

    pass


class ConnectionError(ConnectorError):
    """Error establishing or managing the database connection."""

    pass


class QueryError(ConnectorError):
    """Error validating or executing a query."""

    pass


class SchemaError(ConnectorError):
    """Error introspecting the database schema."""

    pass


# ============================================================================
# Base Store
# ============================================================================


class BaseQueryStore(ABC):
    """
    Abstract base class for read-only query stores.

    Usage:
        store = PostgresQueryStore(url="postgresql://localhost/home")
        await store.connect()

        result = await store.read_only_query("SELECT name FROM vendors")
        print(f"Found {result.row_count} rows")

        await store.close()
    """

    def __init__(self, timeout: int = 10, max_rows: int = MAX_QUERY_ROWS):
        """
        Initialize store.

        Args:
            timeout: Statement timeout in seconds for generated queries
            max_rows: Maximum rows returned by read_only_query
        """
        self.timeout = timeout
        self.max_rows = max_rows

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish the connection pool. Idempotent.

        Raises:
            ConnectionError: If connection fails
        """
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def close(self) -> None:
        """Close the connection pool."""
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def read_only_query(self, sql: str) -> QueryResult:
        """
        Validate and execute a single SELECT statement.

        Raises:
            QueryError: If the statement is rejected or fails
        """
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def table_names(self) -> list[str]:
        """Return user table names, sorted."""
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def table_columns(self, table: str) -> list[ColumnInfo]:
        """
        Return the columns of a table in ordinal order.

        Raises:
            SchemaError: If the name is not a safe identifier or lookup fails
        """
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def column_hints(self) -> str:
        """Return a bullet list of distinct label values, or '' if none."""
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def data_dump(self) -> str:
        """Return every table's live rows as markdown sections."""
        pass  # pragma: no cover - abstract method

    async def describe_schema(self) -> dict[str, list[ColumnInfo]]:
        """
        Collect columns for every table, keyed by table name.

        Tables whose columns cannot be read are left out.

        Raises:
            SchemaError: If tables cannot be listed
        """
        schema: dict[str, list[ColumnInfo]] = {}
        for name in await self.table_names():
            try:
                schema[name] = await self.table_columns(name)
            except SchemaError as e:
                logger.warning(f"Skipping {name} in schema: {e}")
        return schema


# ============================================================================
# Dump Formatting
# ============================================================================


def is_noise_column(column: str) -> bool:
    return column.lower() in NOISE_COLUMNS


def format_column_value(column: str, value: str) -> str:
    """Render 'column: value', showing *_cents columns as dollars."""
    if column.lower().endswith("_cents"):
        try:
            cents = int(value)
        except ValueError:
            return f"{column}: {value}"
        label = column[: -len("_cents")] or column
        return f"{label}: ${cents / 100:.2f}"
    return f"{column}: {value}"


def format_dump_section(table: str, columns: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """
    Render one table for the data dump.

    Empty values and bookkeeping columns are left out of each row. Returns ''
    for a table without rows.
    """
    if not rows:
        return ""
    lines = [f"### {table} ({len(rows)} rows)", ""]
    for row in rows:
        parts = [
            format_column_value(column, value)
            for column, value in zip(columns, row)
            if value != "" and not is_noise_column(column)
        ]
        lines.append("- " + ", ".join(parts))
    return "\n".join(lines) + "\n\n"


def stringify(value: object) -> str:
    """Render a database value as text; NULL becomes ''."""
    if value is None:
        return ""
    return str(value)
