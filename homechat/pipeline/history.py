"""Conversation context derived from the session message log."""

from collections.abc import Sequence

from homechat.llm.models import LLMMessage
from homechat.pipeline.session import ChatMessage, ChatRole


def build_conversation_history(
    messages: Sequence[ChatMessage],
    *,
    active: bool,
) -> list[LLMMessage]:
    """
    Build prior user/assistant turns for re-submission to the model.

    User messages are included verbatim; assistant messages only once they
    have content. Errors and notices never enter model context. While a stage
    is active, a trailing assistant placeholder without content is skipped.
    The message log itself is not modified.

    Args:
        messages: Session message log
        active: Whether a pipeline stage is currently running

    Returns:
        Ordered list of LLMMessage
    """
    history: list[LLMMessage] = []
    last = len(messages) - 1
    for i, msg in enumerate(messages):
        if i == last and active and msg.role is ChatRole.ASSISTANT and not msg.content:
            break
        if msg.role is ChatRole.USER and msg.content:
            history.append(LLMMessage(role="user", content=msg.content))
        elif msg.role is ChatRole.ASSISTANT and msg.content:
            history.append(LLMMessage(role="assistant", content=msg.content))
    return history
