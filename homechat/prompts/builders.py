"""
System prompt assembly for the chat pipeline.

Each stage gets its own template: SQL generation sees the schema as DDL,
the summary sees the executed SQL and a results table, and the fallback
sees a schema outline plus a snapshot of the data.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime

from homechat.connectors.base import ColumnInfo
from homechat.prompts.loader import PromptLoader

SQL_TEMPLATE = "chat/sql_generator.md"
SUMMARY_TEMPLATE = "chat/summary.md"
FALLBACK_TEMPLATE = "chat/fallback.md"

Schema = Mapping[str, Sequence[ColumnInfo]]

_loader = PromptLoader()


def date_context(now: datetime) -> str:
    """Human-readable date line, e.g. 'Today is Monday, January 2, 2006.'"""
    return f"Today is {now:%A}, {now:%B} {now.day}, {now.year}."


def format_ddl(table: str, columns: Sequence[ColumnInfo]) -> str:
    """Render a table as a CREATE TABLE statement for the SQL prompt."""
    lines = [f"CREATE TABLE {table} ("]
    for i, col in enumerate(columns):
        line = f"  {col.name} {col.data_type}"
        if col.is_primary_key:
            line += " PRIMARY KEY"
        if not col.is_nullable:
            line += " NOT NULL"
        if i < len(columns) - 1:
            line += ","
        if col.name.endswith("_cents"):
            line += "  -- cents (divide by 100 for dollars)"
        lines.append(line)
    lines.append(");")
    return "\n".join(lines)


def format_table(table: str, columns: Sequence[ColumnInfo]) -> str:
    """Render a table as a markdown bullet list for the fallback prompt."""
    lines = [f"### {table}"]
    for col in columns:
        flags = ""
        if col.is_primary_key:
            flags += " PK"
        if not col.is_nullable:
            flags += " NOT NULL"
        lines.append(f"- {col.name} {col.data_type}{flags}")
    return "\n".join(lines)


def format_results_table(columns: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Pipe-delimited header and rows; '(no rows)' for an empty result."""
    if not rows:
        return "(no rows)\n"
    lines = [" | ".join(columns)]
    lines.extend(" | ".join(row) for row in rows)
    return "\n".join(lines) + "\n"


def build_sql_prompt(
    schema: Schema,
    column_hints: str = "",
    extra_context: str = "",
    now: datetime | None = None,
    loader: PromptLoader | None = None,
) -> str:
    """
    Build the stage 1 system prompt.

    Args:
        schema: Columns keyed by table name
        column_hints: Bullet list of known stored values
        extra_context: User-configured text appended to the prompt
        now: Current time (defaults to datetime.now())
        loader: Prompt loader (defaults to the packaged templates)
    """
    ddl = "\n\n".join(format_ddl(table, columns) for table, columns in schema.items())
    return (loader or _loader).render(
        SQL_TEMPLATE,
        today=date_context(now or datetime.now()),
        schema=ddl,
        column_hints=column_hints.strip(),
        extra_context=extra_context.strip(),
    )


def build_summary_prompt(
    question: str,
    sql: str,
    results_table: str,
    extra_context: str = "",
    now: datetime | None = None,
    loader: PromptLoader | None = None,
) -> str:
    """Build the stage 2 system prompt from the question, SQL and results."""
    return (loader or _loader).render(
        SUMMARY_TEMPLATE,
        today=date_context(now or datetime.now()),
        question=question,
        sql=sql,
        results=results_table.rstrip("\n"),
        extra_context=extra_context.strip(),
    )


def build_fallback_prompt(
    schema: Schema,
    data_dump: str,
    extra_context: str = "",
    now: datetime | None = None,
    loader: PromptLoader | None = None,
) -> str:
    """Build the single-stage prompt that answers directly from a data snapshot."""
    outline = "\n\n".join(format_table(table, columns) for table, columns in schema.items())
    return (loader or _loader).render(
        FALLBACK_TEMPLATE,
        today=date_context(now or datetime.now()),
        schema=outline,
        data_dump=data_dump.strip(),
        extra_context=extra_context.strip(),
    )
