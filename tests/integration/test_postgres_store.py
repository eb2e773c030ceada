"""
Integration tests for the PostgreSQL query store and the Ollama client.

Requires --run-integration plus:
- HOMECHAT_TEST_DATABASE_URL: a PostgreSQL database the tests may create a
  scratch schema in
- HOMECHAT_TEST_LLM_URL: an Ollama server's OpenAI-compatible base URL
"""

import os

import asyncpg
import pytest
import pytest_asyncio

from homechat.connectors import PostgresQueryStore, QueryError
from homechat.llm import OllamaClient

pytestmark = pytest.mark.integration

SCHEMA = "homechat_it"


@pytest.fixture
def database_url():
    url = os.getenv("HOMECHAT_TEST_DATABASE_URL")
    if not url:
        pytest.skip("HOMECHAT_TEST_DATABASE_URL not set")
    return url


@pytest_asyncio.fixture
async def store(database_url):
    conn = await asyncpg.connect(database_url)
    await conn.execute(f"DROP SCHEMA IF EXISTS {SCHEMA} CASCADE")
    await conn.execute(f"CREATE SCHEMA {SCHEMA}")
    await conn.execute(
        f"""
        CREATE TABLE {SCHEMA}.service_log (
            id SERIAL PRIMARY KEY,
            category TEXT NOT NULL,
            cost_cents INTEGER NOT NULL
        )
        """
    )
    await conn.execute(
        f"INSERT INTO {SCHEMA}.service_log (category, cost_cents) "
        "VALUES ('HVAC', 20000), ('HVAC', 15000), ('Plumbing', 9000)"
    )

    store = PostgresQueryStore(url=database_url, schema=SCHEMA)
    await store.connect()
    yield store
    await store.close()

    await conn.execute(f"DROP SCHEMA IF EXISTS {SCHEMA} CASCADE")
    await conn.close()


class TestPostgresQueryStore:
    @pytest.mark.asyncio
    async def test_select(self, store):
        result = await store.read_only_query(
            f"SELECT SUM(cost_cents) AS total FROM {SCHEMA}.service_log WHERE category = 'HVAC'"
        )

        assert result.columns == ["total"]
        assert result.rows == [["35000"]]

    @pytest.mark.asyncio
    async def test_write_rejected(self, store):
        with pytest.raises(QueryError):
            await store.read_only_query(f"DELETE FROM {SCHEMA}.service_log")

    @pytest.mark.asyncio
    async def test_schema_introspection(self, store):
        assert await store.table_names() == ["service_log"]

        columns = await store.table_columns("service_log")
        assert [column.name for column in columns] == ["id", "category", "cost_cents"]

    @pytest.mark.asyncio
    async def test_hints_and_dump(self, store):
        hints = await store.column_hints()
        dump = await store.data_dump()

        assert "HVAC" in hints
        assert "Plumbing" in dump


@pytest.fixture
def llm_url():
    url = os.getenv("HOMECHAT_TEST_LLM_URL")
    if not url:
        pytest.skip("HOMECHAT_TEST_LLM_URL not set")
    return url


class TestOllamaClient:
    @pytest.mark.asyncio
    async def test_list_models(self, llm_url):
        client = OllamaClient(base_url=llm_url)
        try:
            models = await client.list_models()
        finally:
            await client.close()

        assert isinstance(models, list)
