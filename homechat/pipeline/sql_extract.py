"""Isolate a single SELECT statement from raw model output."""

import re

_THINK_BLOCK = re.compile(r"<think>.*?(?:</think>|$)", re.DOTALL | re.IGNORECASE)
_FENCE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?(.*?)(?:```|$)", re.DOTALL)
_STATEMENT_PATTERN = r"\bSELECT\b|\bWITH\s+(?:RECURSIVE\s+)?\w+\s*(?:\([^)]*\)\s*)?AS\s*\("
# Upper-case keywords win over lower-case ones.
_STATEMENT_START = (
    re.compile(_STATEMENT_PATTERN),
    re.compile(_STATEMENT_PATTERN, re.IGNORECASE),
)
_BLANK_LINE = re.compile(r"\n[ \t]*\n\s*")
_CLAUSE_WORDS = (
    "FROM", "WHERE", "GROUP", "ORDER", "HAVING", "LIMIT", "OFFSET", "FETCH", "WINDOW",
    "JOIN", "LEFT", "RIGHT", "INNER", "OUTER", "FULL", "CROSS", "NATURAL", "LATERAL",
    "ON", "USING", "AND", "OR", "NOT", "UNION", "INTERSECT", "EXCEPT", "SELECT",
    "CASE", "WHEN", "THEN", "ELSE", "END", "AS",
)
# All upper or all lower case, so capitalized prose ("Then ...") does not match.
_CLAUSE_START = re.compile(
    r"[(),]|(?:"
    + "|".join(_CLAUSE_WORDS + tuple(word.lower() for word in _CLAUSE_WORDS))
    + r")\b"
)


def _statement_end(text: str, blank_line_ends: bool) -> int:
    """
    Index of the first unquoted ';'.

    With blank_line_ends, a blank line outside a quoted string also ends the
    statement unless the text after it continues with a SQL clause.
    """
    quote = None
    for i, ch in enumerate(text):
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == ";":
            return i
        elif ch == "\n" and blank_line_ends:
            blank = _BLANK_LINE.match(text, i)
            if blank and not _CLAUSE_START.match(text, blank.end()):
                return i
    return len(text)


def extract_sql(raw: str) -> str:
    """
    Extract the SQL statement from streamed model output.

    Reasoning blocks and markdown fences (closed or not) are removed, prose
    before the first SELECT or WITH ... AS ( is dropped, and the statement
    ends at the first unquoted semicolon. Outside a fence a blank line
    followed by prose also ends it.

    Returns:
        The statement without trailing semicolons, or '' if none was found.
    """
    text = _THINK_BLOCK.sub("", raw).strip()
    fenced = _FENCE.search(text)
    if fenced:
        text = fenced.group(1)

    for pattern in _STATEMENT_START:
        start = pattern.search(text)
        if start is not None:
            break
    else:
        return ""
    text = text[start.start():]
    end = _statement_end(text, blank_line_ends=fenced is None)
    return text[:end].strip().rstrip(";").strip()
