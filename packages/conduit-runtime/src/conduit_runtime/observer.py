"""Before/after hooks fired around every agent call.

Observers are purely observational: anything they raise is logged and
swallowed, so they can never change control flow or replace the error a
call propagates.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from conduit_core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping

    from conduit_runtime.agent import Agent, ProcessResult
    from conduit_runtime.context import ExecutionContext

logger = get_logger("agent")


@runtime_checkable
class CallObserver(Protocol):
    """Receives structured events at the start and end of agent calls."""

    def on_call_start(
        self,
        agent: Agent,
        input: Mapping[str, Any],
        context: ExecutionContext | None,
    ) -> None: ...

    def on_call_end(
        self,
        agent: Agent,
        input: Mapping[str, Any],
        result: ProcessResult | None,
        error: BaseException | None,
        elapsed_ms: float,
    ) -> None: ...


class LoggingObserver:
    """Default observer: DEBUG records on the ``conduit.agent`` logger."""

    def on_call_start(self, agent, input, context) -> None:
        logger.debug(
            "Call agent %s",
            agent.name,
            extra={"agent": agent.name, "run_id": context.run_id if context else None},
        )

    def on_call_end(self, agent, input, result, error, elapsed_ms) -> None:
        if error is not None:
            logger.debug(
                "Agent %s failed after %.1fms: %s",
                agent.name,
                elapsed_ms,
                error,
                extra={"agent": agent.name},
            )
            return
        logger.debug(
            "Agent %s done in %.1fms\ninput: %r\noutput: %r",
            agent.name,
            elapsed_ms,
            dict(input),
            result,
            extra={"agent": agent.name},
        )


default_observer: CallObserver = LoggingObserver()


def notify(observer: CallObserver | None, event: str, *args: Any) -> None:
    """Invoke ``observer.<event>(*args)``, never letting it raise."""
    if observer is None:
        return
    try:
        getattr(observer, event)(*args)
    except Exception:
        logger.warning("Observer %r failed on %s", observer, event, exc_info=True)
