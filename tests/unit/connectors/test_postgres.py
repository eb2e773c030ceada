"""
Unit tests for PostgresQueryStore.

Tests the PostgreSQL query store with mocked asyncpg pools.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from homechat.connectors.base import ConnectionError, QueryError, SchemaError
from homechat.connectors.postgres import PostgresQueryStore


def async_context(value=None) -> MagicMock:
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=value)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


@pytest.fixture
def mock_pool():
    """Mock asyncpg pool whose acquire() yields a mock connection."""
    conn = AsyncMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.execute = AsyncMock()
    conn.transaction = MagicMock(return_value=async_context())

    pool = AsyncMock()
    pool.acquire = MagicMock(return_value=async_context(conn))
    pool.close = AsyncMock()
    return pool, conn


@pytest.fixture
def store(mock_pool):
    pool, _ = mock_pool
    store = PostgresQueryStore(url="postgresql://me@localhost/home", timeout=5, max_rows=3)
    store._pool = pool
    return store


def prepared_statement(columns: list[str], records: list[dict]) -> MagicMock:
    cursor = AsyncMock()
    cursor.fetch = AsyncMock(return_value=records)
    prepared = MagicMock()
    prepared.get_attributes = MagicMock(
        return_value=[SimpleNamespace(name=name) for name in columns]
    )
    prepared.cursor = AsyncMock(return_value=cursor)
    return prepared


class TestConnection:
    """Test connection management."""

    @pytest.mark.asyncio
    async def test_connect_success(self, mock_pool):
        pool, _ = mock_pool
        with patch("asyncpg.create_pool", new=AsyncMock(return_value=pool)) as create_pool:
            store = PostgresQueryStore(url="postgresql://me@localhost/home", pool_size=3)
            await store.connect()
            await store.connect()

        create_pool.assert_awaited_once()
        assert create_pool.call_args.kwargs["max_size"] == 3
        assert create_pool.call_args.kwargs["command_timeout"] > store.timeout

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        with patch(
            "asyncpg.create_pool",
            new=AsyncMock(side_effect=asyncpg.PostgresError("Connection refused")),
        ):
            store = PostgresQueryStore(url="postgresql://me@localhost/home")
            with pytest.raises(ConnectionError, match="Connection refused"):
                await store.connect()

    @pytest.mark.asyncio
    async def test_close(self, store, mock_pool):
        pool, _ = mock_pool
        await store.close()
        pool.close.assert_awaited_once()
        await store.close()

    @pytest.mark.asyncio
    async def test_query_requires_connection(self):
        store = PostgresQueryStore(url="postgresql://me@localhost/home")
        with pytest.raises(ConnectionError, match="Not connected"):
            await store.read_only_query("SELECT 1")


class TestReadOnlyQuery:
    """Test generated query execution."""

    @pytest.mark.asyncio
    async def test_runs_in_readonly_transaction(self, store, mock_pool):
        _, conn = mock_pool
        conn.prepare = AsyncMock(
            return_value=prepared_statement(
                ["category", "total_cents"],
                [{"category": "HVAC", "total_cents": 35000}, {"category": "Roof", "total_cents": None}],
            )
        )

        result = await store.read_only_query("SELECT category, SUM(cost_cents) AS total_cents FROM service_log GROUP BY 1")

        conn.transaction.assert_called_once_with(readonly=True)
        conn.execute.assert_awaited_once_with("SET LOCAL statement_timeout = 5000")
        assert result.columns == ["category", "total_cents"]
        assert result.rows == [["HVAC", "35000"], ["Roof", ""]]
        assert result.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_fetches_at_most_max_rows(self, store, mock_pool):
        _, conn = mock_pool
        prepared = prepared_statement(["n"], [{"n": 1}])
        conn.prepare = AsyncMock(return_value=prepared)

        await store.read_only_query("SELECT n FROM generate_series(1, 10) AS n")

        cursor = prepared.cursor.return_value
        cursor.fetch.assert_awaited_once_with(3)

    @pytest.mark.asyncio
    async def test_rejects_writes_before_touching_database(self, store, mock_pool):
        pool, _ = mock_pool
        with pytest.raises(QueryError, match="only SELECT"):
            await store.read_only_query("DELETE FROM vendors")
        pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout(self, store, mock_pool):
        _, conn = mock_pool
        conn.prepare = AsyncMock(
            side_effect=asyncpg.QueryCanceledError("canceling statement due to statement timeout")
        )
        with pytest.raises(QueryError, match="query timeout"):
            await store.read_only_query("SELECT pg_sleep(60)")

    @pytest.mark.asyncio
    async def test_execution_error(self, store, mock_pool):
        _, conn = mock_pool
        conn.prepare = AsyncMock(
            side_effect=asyncpg.PostgresError('column "nope" does not exist')
        )
        with pytest.raises(QueryError, match='execute query: column "nope" does not exist'):
            await store.read_only_query("SELECT nope FROM vendors")

    @pytest.mark.asyncio
    async def test_client_timeout(self, store, mock_pool):
        _, conn = mock_pool
        prepared = prepared_statement(["n"], [])
        prepared.cursor.return_value.fetch = AsyncMock(side_effect=TimeoutError())
        conn.prepare = AsyncMock(return_value=prepared)

        with pytest.raises(QueryError, match="query timeout"):
            await store.read_only_query("SELECT pg_sleep(60)")

    @pytest.mark.asyncio
    async def test_dropped_connection(self, store, mock_pool):
        _, conn = mock_pool
        conn.prepare = AsyncMock(side_effect=asyncpg.InterfaceError("connection is closed"))

        with pytest.raises(QueryError, match="connection is closed"):
            await store.read_only_query("SELECT 1")

    @pytest.mark.asyncio
    async def test_socket_error(self, store, mock_pool):
        pool, _ = mock_pool
        pool.acquire = MagicMock(side_effect=ConnectionResetError("connection reset by peer"))

        with pytest.raises(QueryError, match="connection reset by peer"):
            await store.read_only_query("SELECT 1")


class TestSchema:
    """Test schema introspection."""

    @pytest.mark.asyncio
    async def test_table_names(self, store, mock_pool):
        _, conn = mock_pool
        conn.fetch = AsyncMock(return_value=[{"table_name": "service_log"}, {"table_name": "vendors"}])

        assert await store.table_names() == ["service_log", "vendors"]

    @pytest.mark.asyncio
    async def test_table_columns(self, store, mock_pool):
        _, conn = mock_pool
        conn.fetch = AsyncMock(
            side_effect=[
                [
                    {"column_name": "id", "data_type": "bigint", "is_nullable": "NO", "column_default": None},
                    {"column_name": "name", "data_type": "text", "is_nullable": "YES", "column_default": None},
                ],
                [{"column_name": "id"}],
            ]
        )

        columns = await store.table_columns("vendors")

        assert [(c.name, c.is_primary_key, c.is_nullable) for c in columns] == [
            ("id", True, False),
            ("name", False, True),
        ]

    @pytest.mark.asyncio
    async def test_table_columns_rejects_unsafe_name(self, store):
        with pytest.raises(SchemaError, match="invalid table name"):
            await store.table_columns('vendors"; DROP TABLE x; --')

    @pytest.mark.asyncio
    async def test_table_names_error(self, store, mock_pool):
        _, conn = mock_pool
        conn.fetch = AsyncMock(side_effect=asyncpg.PostgresError("permission denied"))
        with pytest.raises(SchemaError, match="permission denied"):
            await store.table_names()

    @pytest.mark.asyncio
    async def test_table_names_dropped_connection(self, store, mock_pool):
        _, conn = mock_pool
        conn.fetch = AsyncMock(side_effect=asyncpg.InterfaceError("connection is closed"))

        with pytest.raises(SchemaError, match="connection is closed"):
            await store.table_names()


class TestPromptContext:
    """Test column hints and the data dump."""

    @pytest.mark.asyncio
    async def test_column_hints(self, store, mock_pool):
        _, conn = mock_pool
        store.table_names = AsyncMock(return_value=["service_log"])
        store.table_columns = AsyncMock(
            return_value=[
                SimpleNamespace(name="category"),
                SimpleNamespace(name="cost_cents"),
                SimpleNamespace(name="deleted_at"),
            ]
        )
        conn.fetch = AsyncMock(return_value=[{"value": "HVAC"}, {"value": "Plumbing"}])

        hints = await store.column_hints()

        assert hints == "- service_log category values: HVAC, Plumbing\n"
        query = conn.fetch.call_args.args[0]
        assert 'SELECT DISTINCT "category"::text' in query
        assert "WHERE deleted_at IS NULL" in query

    @pytest.mark.asyncio
    async def test_column_hints_empty(self, store):
        store.table_names = AsyncMock(return_value=["readings"])
        store.table_columns = AsyncMock(return_value=[SimpleNamespace(name="value")])
        assert await store.column_hints() == ""

    @pytest.mark.asyncio
    async def test_data_dump_skips_deleted_rows(self, store, mock_pool):
        _, conn = mock_pool
        store.table_names = AsyncMock(return_value=["service_log", "vendors"])
        conn.fetch = AsyncMock(
            side_effect=[
                [
                    {"id": 1, "category": "HVAC", "cost_cents": 35000, "deleted_at": None},
                    {"id": 2, "category": "Roof", "cost_cents": 90000, "deleted_at": "2025-01-01"},
                ],
                [],
            ]
        )

        dump = await store.data_dump()

        assert dump == "### service_log (1 rows)\n\n- category: HVAC, cost: $350.00\n\n"

    @pytest.mark.asyncio
    async def test_data_dump_skips_failing_tables(self, store, mock_pool):
        _, conn = mock_pool
        store.table_names = AsyncMock(return_value=["broken", "vendors"])
        conn.fetch = AsyncMock(
            side_effect=[asyncpg.PostgresError("relation is locked"), [{"id": 1, "name": "Acme HVAC"}]]
        )

        dump = await store.data_dump()

        assert dump == "### vendors (1 rows)\n\n- name: Acme HVAC\n\n"

    @pytest.mark.asyncio
    async def test_column_hints_connection_failure(self, store, mock_pool):
        pool, _ = mock_pool
        store.table_names = AsyncMock(return_value=["service_log"])
        store.table_columns = AsyncMock(return_value=[SimpleNamespace(name="category")])
        pool.acquire = MagicMock(side_effect=OSError("connection refused"))

        with pytest.raises(SchemaError, match="connection refused"):
            await store.column_hints()

    @pytest.mark.asyncio
    async def test_data_dump_skips_dropped_connection(self, store, mock_pool):
        _, conn = mock_pool
        store.table_names = AsyncMock(return_value=["broken", "vendors"])
        conn.fetch = AsyncMock(
            side_effect=[asyncpg.InterfaceError("connection is closed"), [{"id": 1, "name": "Acme HVAC"}]]
        )

        dump = await store.data_dump()

        assert dump == "### vendors (1 rows)\n\n- name: Acme HVAC\n\n"
