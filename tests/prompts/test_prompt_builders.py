"""Tests for chat prompt assembly."""

from datetime import datetime

from homechat.connectors.base import ColumnInfo
from homechat.prompts.builders import (
    build_fallback_prompt,
    build_sql_prompt,
    build_summary_prompt,
    date_context,
    format_ddl,
    format_results_table,
    format_table,
)

NOW = datetime(2006, 1, 2, 15, 4, 5)

SCHEMA = {
    "service_log": [
        ColumnInfo(name="id", data_type="bigint", is_nullable=False, is_primary_key=True),
        ColumnInfo(name="category", data_type="text"),
        ColumnInfo(name="cost_cents", data_type="integer"),
    ],
}


def test_date_context():
    assert date_context(NOW) == "Today is Monday, January 2, 2006."


def test_format_ddl_marks_cents_columns():
    ddl = format_ddl("service_log", SCHEMA["service_log"])
    assert ddl == (
        "CREATE TABLE service_log (\n"
        "  id bigint PRIMARY KEY NOT NULL,\n"
        "  category text,\n"
        "  cost_cents integer  -- cents (divide by 100 for dollars)\n"
        ");"
    )


def test_format_table():
    assert format_table("service_log", SCHEMA["service_log"]) == (
        "### service_log\n"
        "- id bigint PK NOT NULL\n"
        "- category text\n"
        "- cost_cents integer"
    )


def test_format_results_table():
    table = format_results_table(["category", "total"], [["HVAC", "350.00"], ["Roof", ""]])
    assert table == "category | total\nHVAC | 350.00\nRoof | \n"


def test_format_results_table_empty():
    assert format_results_table(["category"], []) == "(no rows)\n"


def test_sql_prompt_includes_schema_hints_and_date():
    prompt = build_sql_prompt(
        SCHEMA,
        column_hints="- service_log category values: HVAC, Plumbing\n",
        now=NOW,
    )
    assert "Today is Monday, January 2, 2006." in prompt
    assert "CREATE TABLE service_log (" in prompt
    assert "## Known values in the database" in prompt
    assert "HVAC, Plumbing" in prompt
    assert "## Additional context" not in prompt


def test_sql_prompt_without_hints_omits_section():
    prompt = build_sql_prompt(SCHEMA, now=NOW)
    assert "## Known values in the database" not in prompt


def test_extra_context_is_appended_last():
    prompt = build_sql_prompt(SCHEMA, extra_context="  The house was built in 1962.  ", now=NOW)
    assert prompt.endswith("## Additional context\n\nThe house was built in 1962.")


def test_summary_prompt():
    prompt = build_summary_prompt(
        "How much did I spend on HVAC?",
        "SELECT SUM(cost_cents) / 100.0 AS total_dollars FROM service_log",
        "total_dollars\n350.00\n",
        now=NOW,
    )
    assert "## User question\n\nHow much did I spend on HVAC?" in prompt
    assert "```sql\nSELECT SUM(cost_cents) / 100.0 AS total_dollars FROM service_log\n```" in prompt
    assert "```\ntotal_dollars\n350.00\n```" in prompt


def test_fallback_prompt_embeds_data():
    prompt = build_fallback_prompt(
        SCHEMA,
        "### service_log (1 rows)\n\n- category: HVAC, cost: $350.00\n\n",
        extra_context="Prices include tax.",
        now=NOW,
    )
    assert "### service_log\n- id bigint PK NOT NULL" in prompt
    assert "## Current data\n\n### service_log (1 rows)" in prompt
    assert "- category: HVAC, cost: $350.00" in prompt
    assert prompt.endswith("Prices include tax.")


def test_fallback_prompt_without_data():
    prompt = build_fallback_prompt(SCHEMA, "", now=NOW)
    assert "## Current data" not in prompt
