from __future__ import annotations

import inspect
from collections.abc import Iterable, Sequence
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from conduit_core.errors import TopicResolutionError
from conduit_core.logging import get_logger

if TYPE_CHECKING:
    from conduit_runtime.agent import Agent

logger = get_logger("topics")

USER_INPUT_TOPIC = "UserInputTopic"
USER_OUTPUT_TOPIC = "UserOutputTopic"


def _normalize(topics: object, agent_name: str) -> tuple[str, ...]:
    if topics is None:
        return ()
    if isinstance(topics, str):
        return (topics,)
    if isinstance(topics, Sequence) and all(isinstance(t, str) for t in topics):
        return tuple(topics)
    raise TopicResolutionError(
        f"Publish topic of agent {agent_name!r} must be a string or list of "
        f"strings, got {topics!r}"
    )


async def resolve_publish_topics(
    agent: Agent, output: dict[str, Any]
) -> tuple[str, ...]:
    """Resolve *agent*'s publish topic(s) for one concrete *output*.

    A topic function may be sync or async.  Anything it raises becomes a
    :class:`TopicResolutionError`; the message is never dropped silently.
    """
    topic = agent.publish_topic
    if not callable(topic):
        return _normalize(topic, agent.name)

    try:
        resolved = topic(output)
        if inspect.isawaitable(resolved):
            resolved = await resolved
    except Exception as exc:
        raise TopicResolutionError(
            f"Publish topic function of agent {agent.name!r} failed: {exc}"
        ) from exc
    return _normalize(resolved, agent.name)


class TopicBus:
    """Static topic → subscribers routing table for one agent set.

    Built once from a fixed, ordered list of agents.  Subscribers of a
    topic keep registration order, and an agent subscribed to several
    topics appears under each of them.  The table cannot change after
    :meth:`build`.
    """

    __slots__ = ("_agents", "_routes")

    def __init__(
        self,
        agents: tuple[Agent, ...],
        routes: MappingProxyType[str, tuple[Agent, ...]],
    ) -> None:
        self._agents = agents
        self._routes = routes

    @classmethod
    def build(cls, agents: Iterable[Agent]) -> TopicBus:
        ordered = tuple(agents)
        routes: dict[str, list[Agent]] = {}
        for agent in ordered:
            for topic in agent.subscribe_topics:
                subscribers = routes.setdefault(topic, [])
                if agent not in subscribers:
                    subscribers.append(agent)
        frozen = MappingProxyType({t: tuple(subs) for t, subs in routes.items()})
        logger.debug(
            "Topic bus built: %s",
            {t: [a.name for a in subs] for t, subs in frozen.items()},
        )
        return cls(ordered, frozen)

    @property
    def agents(self) -> tuple[Agent, ...]:
        return self._agents

    @property
    def topics(self) -> tuple[str, ...]:
        return tuple(self._routes)

    def subscribers(self, topic: str) -> tuple[Agent, ...]:
        return self._routes.get(topic, ())

    def has_subscribers(self, topic: str) -> bool:
        return bool(self._routes.get(topic))
