"""Conduit Runtime: schema-bound agents, topic routing and the execution engine."""
from __future__ import annotations

from conduit_runtime.agent import (
    USER_INPUT_KEY,
    Agent,
    Data,
    FunctionAgent,
    ProcessResult,
    ToolLike,
    TransferSignal,
    as_agent,
    follow_transfers,
    user_input,
)
from conduit_runtime.context import ExecutionContext, HistoryEntry
from conduit_runtime.engine import ExecutionEngine, UserAgent
from conduit_runtime.model import ChatModel, ModelAgent, render_template
from conduit_runtime.observer import CallObserver, LoggingObserver
from conduit_runtime.schema import AnyObject, validate_passthrough
from conduit_runtime.tools import ToolRegistry
from conduit_runtime.topics import (
    USER_INPUT_TOPIC,
    USER_OUTPUT_TOPIC,
    TopicBus,
    resolve_publish_topics,
)

__all__ = [
    "USER_INPUT_KEY",
    "USER_INPUT_TOPIC",
    "USER_OUTPUT_TOPIC",
    "Agent",
    "AnyObject",
    "CallObserver",
    "ChatModel",
    "Data",
    "ExecutionContext",
    "ExecutionEngine",
    "FunctionAgent",
    "HistoryEntry",
    "LoggingObserver",
    "ModelAgent",
    "ProcessResult",
    "ToolLike",
    "ToolRegistry",
    "TopicBus",
    "TransferSignal",
    "UserAgent",
    "as_agent",
    "follow_transfers",
    "render_template",
    "resolve_publish_topics",
    "user_input",
    "validate_passthrough",
]
