"""
Chat Session

The aggregate the pipeline mutates: message log, active stage, the live
cancellation token and token stream, model pull state, and prompt recall
history. Only event handlers running on the event loop touch these fields.
"""

from dataclasses import dataclass, field
from enum import StrEnum

from homechat.llm.base import PullReader
from homechat.llm.models import UNKNOWN_PERCENT, LLMMessage
from homechat.pipeline.cancellation import CancellationController, CancelToken
from homechat.pipeline.streaming import TokenStream

DEFAULT_HISTORY_MAX = 200

GENERATING_NOTICE = "generating query"
FALLBACK_NOTICE = "falling back to direct query…"
INTERRUPTED_NOTICE = "Interrupted"
PULL_CANCELLED_NOTICE = "Pull cancelled"

TRANSIENT_NOTICES = frozenset({GENERATING_NOTICE, FALLBACK_NOTICE})


class ChatRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    ERROR = "error"
    NOTICE = "notice"


class Stage(StrEnum):
    """Pipeline stage. Exactly one is active at a time."""

    IDLE = "idle"
    GENERATING_SQL = "generating_sql"
    EXECUTING_QUERY = "executing_query"
    STREAMING_SUMMARY = "streaming_summary"
    FALLBACK_STREAMING = "fallback_streaming"


@dataclass
class ChatMessage:
    """
    One entry in the message log.

    Assistant messages collect generated SQL in `sql` during stage 1 and the
    answer in `content` afterwards. Error and notice messages are UI-only.
    """

    role: ChatRole
    content: str = ""
    sql: str = ""


@dataclass
class ModelPullState:
    """Progress of one model download."""

    model_name: str
    cancel_token: CancelToken
    reader: PullReader | None = None
    peak_percent: float = 0.0
    display: str = ""
    display_percent: float = UNKNOWN_PERCENT

    def observe(self, percent: float) -> float:
        """
        Record a progress fraction and return the value to display.

        Known fractions are clamped to the high-water mark so the displayed
        progress never decreases. Unknown fractions (below zero) leave the
        mark untouched and display as unknown.
        """
        if percent < 0:
            self.display_percent = UNKNOWN_PERCENT
            return UNKNOWN_PERCENT
        self.peak_percent = max(self.peak_percent, percent)
        self.display_percent = self.peak_percent
        return self.display_percent


class PromptHistory:
    """
    Submitted inputs for up/down recall.

    Browsing stashes the live input on the way back and restores it when
    moving forward past the newest entry.
    """

    def __init__(self, entries: list[str] | None = None, limit: int = DEFAULT_HISTORY_MAX):
        self.limit = limit
        self.entries: list[str] = list(entries or [])[-limit:]
        self._cursor = -1
        self._stash = ""

    @property
    def browsing(self) -> bool:
        return self._cursor >= 0

    def load(self, entries: list[str]) -> None:
        """Put persisted entries (oldest first) ahead of this session's inputs."""
        merged = list(entries)
        for entry in self.entries:
            if not merged or merged[-1] != entry:
                merged.append(entry)
        self.entries = merged[-self.limit:]
        self.reset()

    def record(self, text: str) -> bool:
        """
        Append an input unless it repeats the newest entry.

        Returns:
            True if the entry was added.
        """
        self.reset()
        if self.entries and self.entries[-1] == text:
            return False
        self.entries.append(text)
        del self.entries[: -self.limit]
        return True

    def back(self, live: str) -> str | None:
        """Step to an older entry. Returns None when there is nothing older."""
        if not self.entries:
            return None
        if self._cursor == -1:
            self._stash = live
            self._cursor = len(self.entries) - 1
        elif self._cursor > 0:
            self._cursor -= 1
        else:
            return None
        return self.entries[self._cursor]

    def forward(self) -> str | None:
        """Step to a newer entry, or back to the stashed live input."""
        if self._cursor == -1:
            return None
        if self._cursor < len(self.entries) - 1:
            self._cursor += 1
            return self.entries[self._cursor]
        stash = self._stash
        self.reset()
        return stash

    def reset(self) -> None:
        self._cursor = -1
        self._stash = ""


@dataclass
class ChatSession:
    """
    State of one open conversation.

    Invariants:
        - cancel_token is set iff active_stage is not IDLE
        - at most one assistant message is in progress, and it follows the
          newest user message while a stage is active
        - current_question and current_history are captured once at submit
    """

    messages: list[ChatMessage] = field(default_factory=list)
    active_stage: Stage = Stage.IDLE
    query_control: CancellationController = field(
        default_factory=lambda: CancellationController("query")
    )
    token_stream: TokenStream | None = None
    current_question: str = ""
    current_history: tuple[LLMMessage, ...] = ()
    pull: ModelPullState | None = None
    history: PromptHistory = field(default_factory=PromptHistory)
    show_sql: bool = False
    visible: bool = False
    history_loaded: bool = False

    @property
    def cancel_token(self) -> CancelToken | None:
        return self.query_control.token

    @property
    def active(self) -> bool:
        return self.active_stage is not Stage.IDLE

    @property
    def pulling(self) -> bool:
        return self.pull is not None

    def append(self, role: ChatRole, content: str = "", sql: str = "") -> ChatMessage:
        message = ChatMessage(role=role, content=content, sql=sql)
        self.messages.append(message)
        return message

    def _placeholder_index(self) -> int | None:
        for i in range(len(self.messages) - 1, -1, -1):
            role = self.messages[i].role
            if role is ChatRole.ASSISTANT:
                return i
            if role is ChatRole.USER:
                return None
        return None

    def placeholder(self) -> ChatMessage | None:
        """
        The assistant message of the current turn, if any.

        Notices (e.g. from a model switch) may be appended after it while a
        stage runs, so this is the last assistant message after the newest
        user message rather than simply the last message.
        """
        index = self._placeholder_index()
        return self.messages[index] if index is not None else None

    def drop_placeholder(self) -> None:
        index = self._placeholder_index()
        if index is not None:
            del self.messages[index]

    def remove_transient_notices(self) -> None:
        """Remove progress notices added since the last user message."""
        for i in range(len(self.messages) - 1, -1, -1):
            message = self.messages[i]
            if message.role is ChatRole.USER:
                return
            if message.role is ChatRole.NOTICE and message.content in TRANSIENT_NOTICES:
                del self.messages[i]

    def insert_before_placeholder(self, role: ChatRole, content: str) -> None:
        index = self._placeholder_index()
        if index is None:
            index = len(self.messages)
        self.messages.insert(index, ChatMessage(role=role, content=content))

    def prune_interrupted(self) -> None:
        """Drop a trailing Interrupted notice left by a previous cancellation."""
        if (
            self.messages
            and self.messages[-1].role is ChatRole.NOTICE
            and self.messages[-1].content == INTERRUPTED_NOTICE
        ):
            self.messages.pop()
