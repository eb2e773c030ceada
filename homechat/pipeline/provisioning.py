"""
Model Provisioning

Lists, switches and pulls models independently of the query pipeline. A
pull keeps its own cancellation token, so cancelling a query never touches
a download and vice versa.
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import partial

from homechat.llm.base import BaseModelClient, LLMError, PullReader, find_local_model
from homechat.pipeline.cancellation import CancelToken
from homechat.pipeline.events import ModelsListed, ModelSwitched, PullProgress, PullStarted
from homechat.pipeline.persistence import SessionPersistence
from homechat.pipeline.runtime import Command
from homechat.pipeline.session import (
    PULL_CANCELLED_NOTICE,
    ChatRole,
    ChatSession,
    ModelPullState,
)

logger = logging.getLogger(__name__)

WELL_KNOWN_MODELS = (
    "deepseek-r1:32b",
    "gemma3:12b",
    "gemma3:27b",
    "llama3.1:70b",
    "llama3.2",
    "llama3.3",
    "mistral-small:24b",
    "phi-4:14b",
    "qwen3:8b",
    "qwen3:32b",
    "qwen3:72b",
)

PULL_IN_PROGRESS_ERROR = "a model pull is already in progress"


@dataclass(frozen=True)
class ModelChoice:
    name: str
    local: bool


def merge_model_lists(local_models: list[str] | tuple[str, ...] | None) -> list[ModelChoice]:
    """Local models first, then well-known models that are not already local."""
    seen: set[str] = set()
    choices: list[ModelChoice] = []
    for name in local_models or ():
        if name not in seen:
            seen.add(name)
            choices.append(ModelChoice(name=name, local=True))
    for name in WELL_KNOWN_MODELS:
        if name not in seen:
            choices.append(ModelChoice(name=name, local=False))
    return choices


def clean_pull_status(status: str, model: str) -> str:
    """Map raw Ollama pull statuses (e.g. 'pulling sha256:...') to readable labels."""
    lowered = status.lower()
    if lowered.startswith("pulling manifest"):
        return f"pulling {model}"
    if lowered.startswith("pulling"):
        return f"downloading {model}"
    if lowered.startswith("verifying"):
        return f"verifying {model}"
    if lowered.startswith("writing"):
        return f"finalizing {model}"
    if lowered == "success":
        return "ready"
    return status


def format_model_list(models: tuple[str, ...] | list[str], active: str) -> str:
    """One model per line with the active one marked."""
    if not models:
        return "  (no models available)"
    return "\n".join(f"• {name}" if name == active else f"  {name}" for name in models)


class ModelProvisioner:
    """
    List, switch and pull models for a chat session.

    Public methods mutate the session and return commands for the event
    loop; handle() applies the events those commands produce.
    """

    def __init__(
        self,
        client: BaseModelClient,
        session: ChatSession,
        persistence: SessionPersistence | None = None,
    ):
        self.client = client
        self.session = session
        self.persistence = persistence or SessionPersistence()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def list_models(self) -> list[Command]:
        return [self._list_models]

    def switch_model(self, name: str) -> list[Command]:
        """Switch to name, pulling it first if it is not available locally."""
        session = self.session
        if session.pull is not None:
            session.append(ChatRole.ERROR, PULL_IN_PROGRESS_ERROR)
            return []

        token = CancelToken(f"pull:{name}")
        session.pull = ModelPullState(
            model_name=name,
            cancel_token=token,
            display=f"checking {name}...",
        )
        logger.info(f"Switching model to {name}")
        return [partial(self._resolve_model, token, name)]

    def cancel_pull(self) -> bool:
        """Cancel the running pull. Safe to call when none is running."""
        pull = self.session.pull
        if pull is None:
            return False
        pull.cancel_token.cancel()
        self.session.pull = None
        logger.info(f"Pull of {pull.model_name} cancelled")
        if self.session.visible:
            self.session.append(ChatRole.NOTICE, PULL_CANCELLED_NOTICE)
        return True

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def handle(self, event: object) -> list[Command]:
        if isinstance(event, ModelsListed):
            self._on_models_listed(event)
            return []
        if isinstance(event, ModelSwitched):
            return self._on_model_switched(event)
        if isinstance(event, PullStarted):
            return self._on_pull_started(event)
        if isinstance(event, PullProgress):
            return self._on_pull_progress(event)
        raise TypeError(f"Unexpected provisioning event: {type(event).__name__}")

    def _is_current(self, token: CancelToken) -> bool:
        pull = self.session.pull
        return pull is not None and pull.cancel_token is token

    def _on_models_listed(self, event: ModelsListed) -> None:
        if event.error:
            self.session.append(ChatRole.ERROR, event.error)
            return
        self.session.append(ChatRole.NOTICE, format_model_list(event.models, self.client.model))

    def _on_model_switched(self, event: ModelSwitched) -> list[Command]:
        if not self._is_current(event.token):
            return []
        self.session.pull = None
        return self._activate(event.model, f"Switched to {event.model}")

    def _on_pull_started(self, event: PullStarted) -> list[Command]:
        if not self._is_current(event.token):
            return [event.reader.aclose]
        self.session.pull.reader = event.reader
        return [partial(self._read_pull, event.token, event.model, event.reader)]

    def _on_pull_progress(self, event: PullProgress) -> list[Command]:
        if not self._is_current(event.token):
            return []
        pull = self.session.pull

        if event.error:
            event.token.cancel()
            self.session.pull = None
            logger.warning(f"Pull of {event.model} failed: {event.error}")
            self.session.append(ChatRole.ERROR, f"pull failed for '{event.model}': {event.error}")
            return []

        if event.chunk is None:
            self.session.pull = None
            return self._activate(event.model, f"{event.model} ready")

        pull.observe(event.chunk.percent)
        pull.display = clean_pull_status(event.chunk.status, event.model)
        return [partial(self._read_pull, event.token, event.model, pull.reader)]

    def _activate(self, model: str, notice: str) -> list[Command]:
        self.client.set_model(model)
        self.session.append(ChatRole.NOTICE, notice)
        return [partial(self.persistence.put_last_model, model)]

    # ------------------------------------------------------------------
    # Background commands
    # ------------------------------------------------------------------

    async def _list_models(self) -> ModelsListed:
        timeout = self.client.timeout
        try:
            models = await asyncio.wait_for(self.client.list_models(), timeout=timeout)
        except TimeoutError:
            return ModelsListed(error=f"listing models timed out after {timeout:g}s")
        except LLMError as e:
            return ModelsListed(error=str(e))
        return ModelsListed(models=tuple(models))

    async def _resolve_model(self, token: CancelToken, name: str) -> object | None:
        try:
            available = await asyncio.wait_for(
                self.client.list_models(), timeout=self.client.timeout
            )
        except (TimeoutError, LLMError) as e:
            logger.debug(f"Could not list models before pulling {name}: {e}")
            available = []

        local = find_local_model(name, available)
        if local is not None:
            return ModelSwitched(token=token, model=local)

        try:
            reader = await self.client.pull_model(name)
        except LLMError as e:
            return PullProgress(token=token, model=name, error=str(e))
        if token.cancelled:
            await reader.aclose()
            return None
        return PullStarted(token=token, model=name, reader=reader)

    async def _read_pull(self, token: CancelToken, name: str, reader: PullReader) -> PullProgress | None:
        """Read one progress update; a cancelled token interrupts the read."""
        if token.cancelled:
            await reader.aclose()
            return None

        read = asyncio.ensure_future(reader.next())
        token.add_callback(read.cancel)
        try:
            chunk = await read
        except asyncio.CancelledError:
            if not token.cancelled:
                raise
            await reader.aclose()
            return None
        except LLMError as e:
            await reader.aclose()
            return PullProgress(token=token, model=name, error=str(e))
        finally:
            token.remove_callback(read.cancel)

        if chunk is None:
            await reader.aclose()
            return PullProgress(token=token, model=name)
        if chunk.error:
            await reader.aclose()
            return PullProgress(token=token, model=name, error=chunk.error)
        return PullProgress(token=token, model=name, chunk=chunk)
