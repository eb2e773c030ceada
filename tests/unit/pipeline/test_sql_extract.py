"""Unit tests for SQL extraction from model output."""

import pytest

from homechat.pipeline.sql_extract import extract_sql


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("SELECT 1", "SELECT 1"),
        ("SELECT 1;", "SELECT 1"),
        ("  SELECT name FROM vendors ;  \n", "SELECT name FROM vendors"),
        ("```sql\nSELECT 1\n```", "SELECT 1"),
        ("```\nSELECT 1\n```", "SELECT 1"),
        ("```sql\nSELECT 1", "SELECT 1"),
        ("Here is the query:\nSELECT name FROM vendors", "SELECT name FROM vendors"),
        ("SELECT 1;\nSELECT 2;", "SELECT 1"),
        ("SELECT 1\n\nThis returns one.", "SELECT 1"),
        (
            "SELECT name FROM vendors WHERE note = 'a; b'",
            "SELECT name FROM vendors WHERE note = 'a; b'",
        ),
        (
            "WITH t AS (SELECT 1 AS n) SELECT n FROM t",
            "WITH t AS (SELECT 1 AS n) SELECT n FROM t",
        ),
        ("<think>I should select the total.</think>\nSELECT SUM(x) FROM t", "SELECT SUM(x) FROM t"),
        ("select count(*) from projects", "select count(*) from projects"),
    ],
)
def test_extract_sql(raw, expected):
    assert extract_sql(raw) == expected


def test_uppercase_keyword_preferred_over_prose():
    raw = "I will select the rows you need.\nSELECT * FROM vendors"
    assert extract_sql(raw) == "SELECT * FROM vendors"


@pytest.mark.parametrize("raw", ["", "   ", "I cannot help with that.", "```\n```"])
def test_no_statement_yields_empty(raw):
    assert extract_sql(raw) == ""


def test_blank_line_inside_fence_keeps_statement():
    raw = "```sql\nSELECT category,\n  SUM(cost_cents)\n\nFROM service_log\nGROUP BY category\n```"
    assert extract_sql(raw) == "SELECT category,\n  SUM(cost_cents)\n\nFROM service_log\nGROUP BY category"


@pytest.mark.parametrize(
    "raw,expected",
    [
        (
            "SELECT name\n\nFROM vendors\n\nThis lists every vendor.",
            "SELECT name\n\nFROM vendors",
        ),
        (
            "select name from vendors\n\nwhere deleted_at is null",
            "select name from vendors\n\nwhere deleted_at is null",
        ),
        ("SELECT 1\n\nThen run it again.", "SELECT 1"),
    ],
)
def test_blank_line_outside_fence(raw, expected):
    assert extract_sql(raw) == expected
