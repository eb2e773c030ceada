"""
Chat Pipeline Orchestrator

Turns a natural-language question into an answer in two streamed stages:

    idle → generating_sql → executing_query → streaming_summary → idle

If the generated SQL fails to execute, the pipeline degrades to a single
stage that answers from a full data snapshot:

    executing_query (fail) → fallback_streaming → idle

Any active stage can be cancelled. All session mutation happens in handle(),
driven by the EventLoop; model calls, store queries and token reads run as
background commands that return immutable events.
"""

import logging
from functools import partial

from homechat.config import ChatSettings
from homechat.connectors.base import BaseQueryStore, ColumnInfo, ConnectorError
from homechat.llm.base import BaseModelClient, LLMError
from homechat.llm.models import LLMMessage
from homechat.pipeline.cancellation import CancelToken
from homechat.pipeline.events import (
    HistoryLoaded,
    ModelsListed,
    ModelSwitched,
    PullProgress,
    PullStarted,
    QueryExecuted,
    StreamStarted,
    StreamToken,
)
from homechat.pipeline.history import build_conversation_history
from homechat.pipeline.persistence import SessionPersistence
from homechat.pipeline.provisioning import ModelProvisioner
from homechat.pipeline.runtime import Command, EventLoop
from homechat.pipeline.session import (
    FALLBACK_NOTICE,
    GENERATING_NOTICE,
    INTERRUPTED_NOTICE,
    ChatRole,
    ChatSession,
    PromptHistory,
    Stage,
)
from homechat.pipeline.sql_extract import extract_sql
from homechat.pipeline.streaming import TokenStream
from homechat.prompts.builders import (
    build_fallback_prompt,
    build_sql_prompt,
    build_summary_prompt,
    format_results_table,
)
from homechat.prompts.loader import PromptLoader

logger = logging.getLogger(__name__)

EMPTY_SQL_ERROR = "LLM returned empty SQL"
SUMMARIZE_REQUEST = "Summarize these results."

HELP_TEXT = (
    "/models          list available models\n"
    "/model <name>    switch model (pulls if needed)\n"
    "/sql             toggle SQL query display\n"
    "/help            show this help"
)

_PROVISIONING_EVENTS = (ModelsListed, ModelSwitched, PullStarted, PullProgress)


class ChatPipeline:
    """
    Conversational NL → SQL → answer pipeline for one chat session.

    Usage:
        pipeline = ChatPipeline(client, store)
        pipeline.open()
        pipeline.submit("how much did I spend on HVAC?")
        await pipeline.run_until_idle()
        print(pipeline.session.messages[-1].content)
    """

    def __init__(
        self,
        client: BaseModelClient,
        store: BaseQueryStore,
        persistence: SessionPersistence | None = None,
        chat_settings: ChatSettings | None = None,
        extra_context: str = "",
        loader: PromptLoader | None = None,
    ):
        """
        Initialize pipeline with its collaborators.

        Args:
            client: Model client shared with provisioning
            store: Read-only query store
            persistence: Best-effort history and last-model persistence
            chat_settings: History retention and stream buffering
            extra_context: User text appended to every system prompt
            loader: Prompt loader (defaults to the packaged templates)
        """
        settings = chat_settings or ChatSettings()
        self.client = client
        self.store = store
        self.persistence = persistence or SessionPersistence()
        self.extra_context = extra_context
        self.loader = loader
        self.stream_buffer = settings.stream_buffer

        self.session = ChatSession(history=PromptHistory(limit=settings.history_max))
        self.provisioner = ModelProvisioner(client, self.session, self.persistence)
        self.loop = EventLoop(self.handle)

    # ==================================================================
    # Session surface
    # ==================================================================

    def open(self) -> None:
        """Show the session, loading persisted input history the first time."""
        self.session.visible = True
        if not self.session.history_loaded:
            self.session.history_loaded = True
            self.loop.dispatch(self._load_history)

    def hide(self) -> None:
        """Hide the session, cancelling any running stage and pull."""
        self.cancel()
        self.provisioner.cancel_pull()
        self.session.visible = False

    def toggle_sql(self) -> bool:
        self.session.show_sql = not self.session.show_sql
        return self.session.show_sql

    def history_back(self, live: str = "") -> str | None:
        return self.session.history.back(live)

    def history_forward(self) -> str | None:
        return self.session.history.forward()

    def submit_input(self, text: str) -> bool:
        """
        Handle a line typed by the user: a slash command or a question.

        Returns:
            True if the input started something or changed the session.
        """
        text = text.strip()
        if not text:
            return False
        if self.session.history.record(text):
            self.loop.dispatch(partial(self.persistence.append_chat_input, text))

        if text.startswith("/"):
            return self._run_command(text)
        return self.submit(text)

    def submit(self, question: str) -> bool:
        """
        Start answering a question.

        Rejected (returns False) when the question is blank or a stage is
        already active.
        """
        question = question.strip()
        session = self.session
        if not question or session.active:
            return False

        session.prune_interrupted()
        history = tuple(build_conversation_history(session.messages, active=False))
        session.append(ChatRole.USER, question)
        session.append(ChatRole.NOTICE, GENERATING_NOTICE)
        session.append(ChatRole.ASSISTANT)

        token = session.query_control.arm()
        session.current_question = question
        session.current_history = history
        session.active_stage = Stage.GENERATING_SQL
        logger.debug(f"Stage -> {session.active_stage}", extra={"question": question})

        self.loop.dispatch(partial(self._start_sql_stream, token, question, history))
        return True

    def cancel(self) -> bool:
        """
        Interrupt the active stage. A no-op when nothing is running.

        The partial assistant message and progress notices are removed, and an
        Interrupted notice is shown if the session is visible.
        """
        session = self.session
        if not session.active:
            return False

        stage = session.active_stage
        session.query_control.cancel()
        self._reset_stage()
        session.remove_transient_notices()
        session.drop_placeholder()
        if session.visible:
            session.append(ChatRole.NOTICE, INTERRUPTED_NOTICE)
        logger.info(f"Cancelled {stage}")
        return True

    def list_models(self) -> None:
        self.loop.dispatch(*self.provisioner.list_models())

    def switch_model(self, name: str) -> None:
        self.loop.dispatch(*self.provisioner.switch_model(name))

    def cancel_pull(self) -> bool:
        return self.provisioner.cancel_pull()

    async def step(self) -> object:
        return await self.loop.step()

    async def run_until_idle(self) -> None:
        await self.loop.run_until_idle()

    async def shutdown(self) -> None:
        self.hide()
        await self.loop.shutdown()

    # ==================================================================
    # Slash commands
    # ==================================================================

    def _run_command(self, text: str) -> bool:
        parts = text.split()
        command = parts[0].lower()
        session = self.session

        if command == "/models":
            self.list_models()
        elif command == "/model":
            if len(parts) < 2:
                session.append(
                    ChatRole.NOTICE,
                    f"Active model: {self.client.model}\nUsage: /model <name>",
                )
            else:
                self.switch_model(parts[1])
        elif command == "/sql":
            self.toggle_sql()
        elif command == "/help":
            session.append(ChatRole.NOTICE, HELP_TEXT)
        else:
            session.append(ChatRole.ERROR, f"unknown command: {command} (try /help)")
        return True

    # ==================================================================
    # Event handling
    # ==================================================================

    def handle(self, event: object) -> list[Command]:
        """Apply one event to the session and return follow-up commands."""
        if isinstance(event, StreamToken):
            return self._on_stream_token(event)
        if isinstance(event, StreamStarted):
            return self._on_stream_started(event)
        if isinstance(event, QueryExecuted):
            return self._on_query_executed(event)
        if isinstance(event, _PROVISIONING_EVENTS):
            return self.provisioner.handle(event)
        if isinstance(event, HistoryLoaded):
            self.session.history.load(list(event.entries))
            return []
        raise TypeError(f"Unexpected pipeline event: {type(event).__name__}")

    def _is_current(self, token: CancelToken, stage: Stage) -> bool:
        return self.session.cancel_token is token and self.session.active_stage is stage

    def _on_stream_started(self, event: StreamStarted) -> list[Command]:
        if not self._is_current(event.token, event.stage):
            if event.stream is not None:
                event.stream.close()
            logger.debug(f"Dropping late stream start for {event.stage}")
            return []

        if event.error:
            self._fail(event.error)
            return []

        self.session.token_stream = event.stream
        return [partial(self._read_next, event.token, event.stage, event.stream)]

    def _on_stream_token(self, event: StreamToken) -> list[Command]:
        if not self._is_current(event.token, event.stage):
            logger.debug(f"Dropping late token for {event.stage}")
            return []

        token_event = event.event
        if token_event.error:
            self._fail(token_event.error)
            return []

        message = self.session.placeholder()
        if message is not None:
            if event.stage is Stage.GENERATING_SQL:
                message.sql += token_event.content
            else:
                message.content += token_event.content

        if token_event.done:
            if event.stage is Stage.GENERATING_SQL:
                return self._finish_sql()
            self._finish_answer()
            return []

        return [partial(self._read_next, event.token, event.stage, self.session.token_stream)]

    def _finish_sql(self) -> list[Command]:
        session = self.session
        session.token_stream = None
        message = session.placeholder()
        sql = extract_sql(message.sql) if message is not None else ""
        session.remove_transient_notices()

        if not sql:
            logger.warning("SQL generation produced no statement")
            self._fail(EMPTY_SQL_ERROR)
            return []

        message.sql = sql
        session.active_stage = Stage.EXECUTING_QUERY
        logger.debug(f"Stage -> {session.active_stage}", extra={"sql": sql})
        return [partial(self._execute_query, session.cancel_token, session.current_question, sql)]

    def _on_query_executed(self, event: QueryExecuted) -> list[Command]:
        if not self._is_current(event.token, Stage.EXECUTING_QUERY):
            logger.debug("Dropping query result for an inactive stage")
            return []

        session = self.session
        session.query_control.clear()

        if event.error or event.result is None:
            logger.warning(f"Generated SQL failed, falling back: {event.error}")
            session.insert_before_placeholder(ChatRole.NOTICE, FALLBACK_NOTICE)
            token = session.query_control.arm()
            session.active_stage = Stage.FALLBACK_STREAMING
            logger.debug(f"Stage -> {session.active_stage}")
            return [
                partial(
                    self._start_fallback_stream,
                    token,
                    event.question,
                    session.current_history,
                )
            ]

        results = format_results_table(event.result.columns, event.result.rows)
        prompt = build_summary_prompt(
            event.question,
            event.sql,
            results,
            extra_context=self.extra_context,
            loader=self.loader,
        )
        messages = [
            LLMMessage(role="system", content=prompt),
            LLMMessage(role="user", content=SUMMARIZE_REQUEST),
        ]
        token = session.query_control.arm()
        session.active_stage = Stage.STREAMING_SUMMARY
        logger.debug(f"Stage -> {session.active_stage}", extra={"rows": event.result.row_count})
        return [partial(self._open_stream, token, Stage.STREAMING_SUMMARY, messages)]

    def _finish_answer(self) -> None:
        logger.debug(f"Stage {self.session.active_stage} complete")
        self.session.token_stream = None
        self.session.query_control.clear()
        self._reset_stage()

    def _fail(self, error: str) -> None:
        """End the active stage with an error message."""
        session = self.session
        stage = session.active_stage
        session.query_control.cancel()
        self._reset_stage()
        session.remove_transient_notices()

        message = session.placeholder()
        if stage is Stage.GENERATING_SQL or (message is not None and not message.sql):
            session.drop_placeholder()
        logger.warning(f"{stage} failed: {error}")
        session.append(ChatRole.ERROR, error)

    def _reset_stage(self) -> None:
        session = self.session
        if session.token_stream is not None:
            session.token_stream.close()
            session.token_stream = None
        session.active_stage = Stage.IDLE
        session.current_question = ""
        session.current_history = ()

    # ==================================================================
    # Background commands (no session access)
    # ==================================================================

    async def _load_history(self) -> HistoryLoaded:
        return HistoryLoaded(entries=tuple(await self.persistence.load_chat_history()))

    async def _schema(self) -> dict[str, list[ColumnInfo]]:
        try:
            return await self.store.describe_schema()
        except ConnectorError as e:
            logger.warning(f"Schema introspection failed: {e}")
            return {}

    async def _start_sql_stream(
        self,
        token: CancelToken,
        question: str,
        history: tuple[LLMMessage, ...],
    ) -> StreamStarted:
        try:
            messages = await self._sql_messages(question, history)
        except Exception as e:
            logger.exception("Failed to build SQL generation prompt")
            return StreamStarted(
                token=token,
                stage=Stage.GENERATING_SQL,
                error=f"SQL generation failed: {e}",
            )

        started = await self._open_stream(token, Stage.GENERATING_SQL, messages)
        if started.error:
            return StreamStarted(
                token=token,
                stage=Stage.GENERATING_SQL,
                error=f"SQL generation failed: {started.error}",
            )
        return started

    async def _sql_messages(
        self,
        question: str,
        history: tuple[LLMMessage, ...],
    ) -> list[LLMMessage]:
        schema = await self._schema()
        try:
            hints = await self.store.column_hints()
        except ConnectorError as e:
            logger.warning(f"Column hints unavailable: {e}")
            hints = ""

        prompt = build_sql_prompt(
            schema,
            column_hints=hints,
            extra_context=self.extra_context,
            loader=self.loader,
        )
        return [
            LLMMessage(role="system", content=prompt),
            *history,
            LLMMessage(role="user", content=question),
        ]

    async def _start_fallback_stream(
        self,
        token: CancelToken,
        question: str,
        history: tuple[LLMMessage, ...],
    ) -> StreamStarted:
        try:
            messages = await self._fallback_messages(question, history)
        except Exception as e:
            logger.exception("Failed to build fallback prompt")
            return StreamStarted(token=token, stage=Stage.FALLBACK_STREAMING, error=str(e))
        return await self._open_stream(token, Stage.FALLBACK_STREAMING, messages)

    async def _fallback_messages(
        self,
        question: str,
        history: tuple[LLMMessage, ...],
    ) -> list[LLMMessage]:
        schema = await self._schema()
        try:
            data_dump = await self.store.data_dump()
        except ConnectorError as e:
            logger.warning(f"Data dump unavailable: {e}")
            data_dump = ""

        prompt = build_fallback_prompt(
            schema,
            data_dump,
            extra_context=self.extra_context,
            loader=self.loader,
        )
        return [
            LLMMessage(role="system", content=prompt),
            *history,
            LLMMessage(role="user", content=question),
        ]

    async def _open_stream(
        self,
        token: CancelToken,
        stage: Stage,
        messages: list[LLMMessage],
    ) -> StreamStarted:
        try:
            chunks = await self.client.chat_stream(messages)
        except LLMError as e:
            return StreamStarted(token=token, stage=stage, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error opening model stream")
            return StreamStarted(token=token, stage=stage, error=str(e))
        return StreamStarted(
            token=token,
            stage=stage,
            stream=TokenStream(chunks, token, buffer=self.stream_buffer),
        )

    async def _read_next(
        self,
        token: CancelToken,
        stage: Stage,
        stream: TokenStream,
    ) -> StreamToken | None:
        event = await stream.next()
        if event is None:
            return None
        return StreamToken(token=token, stage=stage, event=event)

    async def _execute_query(self, token: CancelToken, question: str, sql: str) -> QueryExecuted:
        try:
            result = await self.store.read_only_query(sql)
        except ConnectorError as e:
            return QueryExecuted(token=token, question=question, sql=sql, error=f"query error: {e}")
        except Exception as e:
            logger.exception("Unexpected error executing query")
            return QueryExecuted(token=token, question=question, sql=sql, error=f"query error: {e}")
        return QueryExecuted(token=token, question=question, sql=sql, result=result)
