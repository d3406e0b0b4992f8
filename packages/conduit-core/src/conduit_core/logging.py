from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from conduit_core.config import LoggingConfig

# Extra attributes attached by the call observer and the engine.
_CONTEXT_FIELDS = ("agent", "run_id", "topic")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, carrying agent/run correlation fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": record.created,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    *,
    force: bool = False,
) -> logging.Logger:
    """Configure and return the root conduit logger.

    Repeated calls are no-ops unless *force* is set, in which case the
    existing handlers are replaced.
    """
    logger = logging.getLogger("conduit")

    if logger.handlers and not force:
        return logger
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))

    logger.addHandler(handler)
    return logger


def setup_logging_from(config: LoggingConfig) -> logging.Logger:
    """Configure logging from the ``[logging]`` config section."""
    return setup_logging(config.level, config.json, force=True)


def get_logger(name: str) -> logging.Logger:
    """Get a child logger under the conduit namespace."""
    return logging.getLogger(f"conduit.{name}")
