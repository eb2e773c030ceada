"""
Read-only statement validation.

Generated SQL is checked here before it reaches the database: a single
SELECT (or WITH ... SELECT) statement with no write or DDL keywords.
Validation works on sqlparse tokens, so string literals and identifiers
such as deleted_at never match a keyword.
"""

import sqlparse
from sqlparse.tokens import Keyword, Name, Punctuation

from homechat.connectors.base import QueryError

DISALLOWED_KEYWORDS = frozenset(
    {
        "INSERT",
        "UPDATE",
        "DELETE",
        "MERGE",
        "DROP",
        "ALTER",
        "CREATE",
        "TRUNCATE",
        "GRANT",
        "REVOKE",
        "COPY",
        "LOCK",
        "REINDEX",
        "VACUUM",
    }
)


def _is_ident_char(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch == "_")


def is_safe_identifier(name: str) -> bool:
    """True for a non-empty name of ASCII letters, digits and underscores."""
    return bool(name) and all(_is_ident_char(ch) for ch in name)


def validate_select(sql: str) -> str:
    """
    Validate a generated statement and return it trimmed.

    Raises:
        QueryError: If the statement is empty, contains several statements,
            is not a SELECT, or uses a disallowed keyword.
    """
    trimmed = sql.strip()
    if not trimmed:
        raise QueryError("empty query")

    statements = sqlparse.parse(trimmed)
    tokens = [token for statement in statements for token in statement.flatten()]
    if len(statements) > 1 or any(
        token.ttype is Punctuation and token.value == ";" for token in tokens
    ):
        raise QueryError("multiple statements are not allowed")

    first = statements[0].token_first(skip_ws=True, skip_cm=True)
    if first is None or first.value.upper() not in ("SELECT", "WITH"):
        raise QueryError("only SELECT queries are allowed")

    for token in tokens:
        if token.ttype in Keyword or token.ttype in Name:
            word = token.value.upper()
            if word in DISALLOWED_KEYWORDS:
                raise QueryError(f"query contains disallowed keyword: {word}")
    return trimmed
