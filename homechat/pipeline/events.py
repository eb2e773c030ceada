"""
Pipeline events.

Background commands return these immutable values to the event loop; only
the handlers that receive them mutate the session. Events tied to an
activity carry its CancelToken so late arrivals can be recognised and dropped.
"""

from dataclasses import dataclass

from homechat.connectors.base import QueryResult
from homechat.llm.base import PullReader
from homechat.llm.models import PullChunk
from homechat.pipeline.cancellation import CancelToken
from homechat.pipeline.session import Stage
from homechat.pipeline.streaming import TokenEvent, TokenStream


@dataclass(frozen=True)
class StreamStarted:
    """A model stream for a stage was opened, or failed to open."""

    token: CancelToken
    stage: Stage
    stream: TokenStream | None = None
    error: str | None = None


@dataclass(frozen=True)
class StreamToken:
    """The next event from a stage's token stream."""

    token: CancelToken
    stage: Stage
    event: TokenEvent


@dataclass(frozen=True)
class QueryExecuted:
    """Result of running the generated SQL against the store."""

    token: CancelToken
    question: str
    sql: str
    result: QueryResult | None = None
    error: str | None = None


@dataclass(frozen=True)
class HistoryLoaded:
    entries: tuple[str, ...]


@dataclass(frozen=True)
class ModelsListed:
    models: tuple[str, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class ModelSwitched:
    """The requested model was already available locally."""

    token: CancelToken
    model: str


@dataclass(frozen=True)
class PullStarted:
    token: CancelToken
    model: str
    reader: PullReader


@dataclass(frozen=True)
class PullProgress:
    """
    One step of a model pull.

    chunk is None with no error when the download finished. error is set for
    transport failures and for errors the server streamed inline.
    """

    token: CancelToken
    model: str
    chunk: PullChunk | None = None
    error: str | None = None
