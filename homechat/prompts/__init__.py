"""Prompt templates and builders for each pipeline stage."""

from homechat.prompts.builders import (
    build_fallback_prompt,
    build_sql_prompt,
    build_summary_prompt,
    date_context,
    format_ddl,
    format_results_table,
    format_table,
)
from homechat.prompts.loader import PromptLoader

__all__ = [
    "PromptLoader",
    "build_fallback_prompt",
    "build_sql_prompt",
    "build_summary_prompt",
    "date_context",
    "format_ddl",
    "format_results_table",
    "format_table",
]
