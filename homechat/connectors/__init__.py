"""
Read-only query stores.

The chat pipeline only ever reads: generated SQL is validated as a single
SELECT and executed in a read-only transaction.
"""

from homechat.connectors.base import (
    BaseQueryStore,
    ColumnInfo,
    ConnectionError,
    ConnectorError,
    QueryError,
    QueryResult,
    SchemaError,
)
from homechat.connectors.postgres import PostgresQueryStore
from homechat.connectors.readonly import is_safe_identifier, validate_select

__all__ = [
    "BaseQueryStore",
    "ColumnInfo",
    "ConnectionError",
    "ConnectorError",
    "PostgresQueryStore",
    "QueryError",
    "QueryResult",
    "SchemaError",
    "is_safe_identifier",
    "validate_select",
]
