"""Unit tests for query store models and dump formatting."""

from unittest.mock import AsyncMock

import pytest

from homechat.connectors.base import (
    QueryResult,
    SchemaError,
    format_column_value,
    format_dump_section,
    is_noise_column,
    stringify,
)
from fakes import FakeQueryStore


class TestQueryResult:
    def test_row_count(self):
        result = QueryResult(columns=["a"], rows=[["1"], ["2"]])
        assert result.row_count == 2


class TestFormatting:
    """Test dump formatting helpers."""

    def test_stringify_null(self):
        assert stringify(None) == ""
        assert stringify(35000) == "35000"

    def test_noise_columns(self):
        assert is_noise_column("ID")
        assert is_noise_column("deleted_at")
        assert not is_noise_column("name")

    def test_cents_as_dollars(self):
        assert format_column_value("cost_cents", "35000") == "cost: $350.00"

    def test_non_numeric_cents_kept(self):
        assert format_column_value("cost_cents", "n/a") == "cost_cents: n/a"

    def test_plain_value(self):
        assert format_column_value("category", "HVAC") == "category: HVAC"

    def test_dump_section(self):
        section = format_dump_section(
            "service_log",
            ["id", "category", "cost_cents", "notes"],
            [["1", "HVAC", "35000", ""], ["2", "Plumbing", "12050", "kitchen sink"]],
        )
        assert section == (
            "### service_log (2 rows)\n"
            "\n"
            "- category: HVAC, cost: $350.00\n"
            "- category: Plumbing, cost: $120.50, notes: kitchen sink\n"
            "\n"
        )

    def test_empty_table_renders_nothing(self):
        assert format_dump_section("vendors", ["name"], []) == ""


class TestDescribeSchema:
    @pytest.mark.asyncio
    async def test_collects_every_table(self):
        store = FakeQueryStore()
        schema = await store.describe_schema()

        assert list(schema) == ["service_log", "vendors"]
        assert [col.name for col in schema["vendors"]] == ["id", "name"]

    @pytest.mark.asyncio
    async def test_skips_unreadable_tables(self):
        store = FakeQueryStore()
        vendor_columns = await store.table_columns("vendors")
        store.table_names = AsyncMock(return_value=["my-table", "vendors"])
        store.table_columns = AsyncMock(
            side_effect=[SchemaError("invalid table name: 'my-table'"), vendor_columns]
        )

        schema = await store.describe_schema()

        assert list(schema) == ["vendors"]
        assert schema["vendors"] == vendor_columns

    @pytest.mark.asyncio
    async def test_listing_failure_propagates(self):
        store = FakeQueryStore()
        store.table_names = AsyncMock(side_effect=SchemaError("permission denied"))

        with pytest.raises(SchemaError, match="permission denied"):
            await store.describe_schema()
