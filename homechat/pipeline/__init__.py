"""
Conversational query pipeline.

ChatPipeline drives a ChatSession through SQL generation, query execution
and answer streaming, with cancellation and model provisioning alongside.
"""

from homechat.pipeline.cancellation import CancellationController, CancelToken
from homechat.pipeline.history import build_conversation_history
from homechat.pipeline.orchestrator import ChatPipeline
from homechat.pipeline.persistence import SessionPersistence
from homechat.pipeline.provisioning import (
    WELL_KNOWN_MODELS,
    ModelChoice,
    ModelProvisioner,
    clean_pull_status,
    merge_model_lists,
)
from homechat.pipeline.runtime import EventLoop
from homechat.pipeline.session import (
    ChatMessage,
    ChatRole,
    ChatSession,
    ModelPullState,
    PromptHistory,
    Stage,
)
from homechat.pipeline.sql_extract import extract_sql
from homechat.pipeline.streaming import TokenEvent, TokenStream

__all__ = [
    "CancelToken",
    "CancellationController",
    "ChatMessage",
    "ChatPipeline",
    "ChatRole",
    "ChatSession",
    "EventLoop",
    "ModelChoice",
    "ModelProvisioner",
    "ModelPullState",
    "PromptHistory",
    "SessionPersistence",
    "Stage",
    "TokenEvent",
    "TokenStream",
    "WELL_KNOWN_MODELS",
    "build_conversation_history",
    "clean_pull_status",
    "extract_sql",
    "merge_model_lists",
]
