"""Conduit Core: shared config, errors, and logging."""
from __future__ import annotations

from conduit_core._version import __version__
from conduit_core.config import (
    ConduitConfig,
    EngineConfig,
    LoggingConfig,
    MCPConfig,
)
from conduit_core.errors import (
    AgentError,
    ConduitError,
    ConfigError,
    EngineError,
    MCPConnectionError,
    MCPError,
    ModelUnavailableError,
    NotCallableError,
    ProtocolError,
    RunLimitError,
    SchemaValidationError,
    ToolExecutionError,
    TopicResolutionError,
)
from conduit_core.logging import get_logger, setup_logging, setup_logging_from

__all__ = [
    # Errors
    "AgentError",
    # Config
    "ConduitConfig",
    "ConduitError",
    "ConfigError",
    "EngineConfig",
    "EngineError",
    "LoggingConfig",
    "MCPConfig",
    "MCPConnectionError",
    "MCPError",
    "ModelUnavailableError",
    "NotCallableError",
    "ProtocolError",
    "RunLimitError",
    "SchemaValidationError",
    "ToolExecutionError",
    "TopicResolutionError",
    # Version
    "__version__",
    # Logging
    "get_logger",
    "setup_logging",
    "setup_logging_from",
]
