from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from conduit_runtime.agent import Agent
    from conduit_runtime.model import ChatModel


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One completed agent invocation within a run."""
    agent: str
    input: Mapping[str, Any]
    output: Mapping[str, Any]


@dataclass(slots=True)
class ExecutionContext:
    """Run-scoped state threaded through every agent call of one run.

    Created by the :class:`ExecutionEngine` at the start of a run and
    discarded when the run ends.  History is append-only: agents add
    entries through :meth:`record` and only ever see a tuple snapshot.
    """
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    correlation: dict[str, str] = field(default_factory=dict)
    model: ChatModel | None = None
    tools: Sequence[Agent] = ()
    _history: list[HistoryEntry] = field(default_factory=list, repr=False)

    @property
    def history(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._history)

    def record(
        self,
        agent: str,
        input: Mapping[str, Any],
        output: Mapping[str, Any],
    ) -> HistoryEntry:
        entry = HistoryEntry(
            agent=agent,
            input=MappingProxyType(dict(input)),
            output=MappingProxyType(dict(output)),
        )
        self._history.append(entry)
        return entry
