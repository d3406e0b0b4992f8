"""MCPConnection: one negotiated client session with an MCP host.

Everything opened to reach the host (the subprocess for stdio, the HTTP
stream for SSE, and the protocol session on top) lives in a single
:class:`contextlib.AsyncExitStack` held by a dedicated owner task.  The
transports run anyio task groups, which must be exited by the task that
entered them, so the owner task both opens and closes the stack; any
other task only signals it.  :meth:`MCPConnection.close` guarantees the
teardown happens once.
"""
from __future__ import annotations

import asyncio
import contextlib
import enum
from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

import anyio
from conduit_core.config import MCPConfig
from conduit_core.errors import MCPConnectionError, ProtocolError
from conduit_core.logging import get_logger
from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError
from mcp.types import (
    Implementation,
    InitializeResult,
    Prompt,
    ServerCapabilities,
    Tool,
)

logger = get_logger("mcp")


class TransportKind(enum.Enum):
    STDIO = "stdio"
    SSE = "sse"


@dataclass(frozen=True, slots=True)
class StdioServerOptions:
    """Spawn the host as a subprocess speaking MCP over stdin/stdout."""
    command: str
    args: Sequence[str] = ()
    cwd: str | None = None
    env: Mapping[str, str] | None = None


@dataclass(frozen=True, slots=True)
class SSEServerOptions:
    """Reach the host over a persistent server-sent-events stream."""
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)


ServerOptions = Union[StdioServerOptions, SSEServerOptions]

_TRANSPORT_ERRORS = (
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    OSError,
)


def _describe(options: ServerOptions) -> tuple[TransportKind, str]:
    if isinstance(options, SSEServerOptions):
        return TransportKind.SSE, options.url
    return TransportKind.STDIO, " ".join([options.command, *options.args])


def _transport(options: ServerOptions) -> contextlib.AbstractAsyncContextManager[Any]:
    if isinstance(options, SSEServerOptions):
        return sse_client(options.url, headers=dict(options.headers) or None)
    return stdio_client(
        StdioServerParameters(
            command=options.command,
            args=list(options.args),
            env=dict(options.env) if options.env is not None else None,
            cwd=options.cwd,
        )
    )


Closer = Callable[[], Awaitable[None]]


async def _hold_session(
    options: ServerOptions,
    config: MCPConfig,
    ready: asyncio.Future[tuple[ClientSession, InitializeResult]],
    stop: asyncio.Event,
) -> None:
    """Owner task body: open the session, publish it, wait, tear down."""
    async with contextlib.AsyncExitStack() as stack:
        read, write = await stack.enter_async_context(_transport(options))
        session = await stack.enter_async_context(
            ClientSession(
                read,
                write,
                client_info=Implementation(
                    name=config.client_name, version=config.client_version
                ),
            )
        )
        init = await session.initialize()
        ready.set_result((session, init))
        await stop.wait()


async def _stop_owner(
    owner: asyncio.Task[None],
    stop: asyncio.Event,
    target: str,
    *,
    cancel: bool = False,
) -> None:
    stop.set()
    if cancel:
        owner.cancel()
    try:
        await owner
    except asyncio.CancelledError:
        if not owner.cancelled():
            raise
    except Exception:
        logger.warning("Error while closing MCP connection to %s", target, exc_info=True)


class MCPConnection:
    """A live, initialized MCP client session.

    Build one with :meth:`open`; the constructor only wires up parts that
    are already connected.  *closer* tears those parts down and is
    awaited at most once.
    """

    def __init__(
        self,
        kind: TransportKind,
        target: str,
        session: ClientSession,
        closer: Closer,
        *,
        server_info: Implementation | None = None,
        capabilities: ServerCapabilities | None = None,
    ) -> None:
        self.kind = kind
        self.target = target
        self.session = session
        self.server_info = server_info
        self.capabilities = capabilities or ServerCapabilities()
        self._closer = closer
        self._closed = False

    @classmethod
    async def open(
        cls,
        options: ServerOptions,
        config: MCPConfig | None = None,
    ) -> MCPConnection:
        """Start the transport and run the ``initialize`` handshake.

        The session is held by an owner task.  It is torn down again if
        any step fails or the handshake exceeds
        ``config.startup_timeout_seconds``.
        """
        config = config or MCPConfig()
        kind, target = _describe(options)
        ready: asyncio.Future[tuple[ClientSession, InitializeResult]] = (
            asyncio.get_running_loop().create_future()
        )
        stop = asyncio.Event()
        logger.debug("Connecting to MCP server via %s: %s", kind.value, target)
        owner = asyncio.create_task(
            _hold_session(options, config, ready, stop), name=f"mcp-session {target}"
        )
        try:
            async with asyncio.timeout(config.startup_timeout_seconds):
                await asyncio.wait({ready, owner}, return_when=asyncio.FIRST_COMPLETED)
        except TimeoutError as exc:
            await _stop_owner(owner, stop, target, cancel=True)
            raise MCPConnectionError(
                f"MCP server {target!r} did not finish the handshake within "
                f"{config.startup_timeout_seconds}s"
            ) from exc
        except BaseException:
            await _stop_owner(owner, stop, target, cancel=True)
            raise

        if not ready.done():
            error = None if owner.cancelled() else owner.exception()
            raise MCPConnectionError(
                f"Cannot connect to MCP server {target!r}: {error}"
            ) from error

        session, init = ready.result()

        async def closer() -> None:
            await _stop_owner(owner, stop, target)

        connection = cls(
            kind,
            target,
            session,
            closer,
            server_info=init.serverInfo,
            capabilities=init.capabilities,
        )
        logger.info("Connected to MCP server %s (%s)", connection.server_name, kind.value)
        return connection

    # ── Introspection ───────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def server_name(self) -> str | None:
        if self.server_info is None:
            return None
        return f"{self.server_info.name}@{self.server_info.version}"

    @property
    def has_tools(self) -> bool:
        return self.capabilities.tools is not None

    @property
    def has_prompts(self) -> bool:
        return self.capabilities.prompts is not None

    # ── Requests ────────────────────────────────────────────────────

    @contextlib.contextmanager
    def _request(self, operation: str) -> Iterator[None]:
        if self._closed:
            raise MCPConnectionError(
                f"{operation}: connection to {self.target!r} is closed"
            )
        try:
            yield
        except McpError as exc:
            raise ProtocolError(
                f"{operation} on {self.server_name or self.target} failed: {exc}"
            ) from exc
        except _TRANSPORT_ERRORS as exc:
            raise MCPConnectionError(
                f"{operation}: transport to {self.target!r} failed: {exc!r}"
            ) from exc

    async def list_tools(self) -> list[Tool]:
        with self._request("tools/list"):
            result = await self.session.list_tools()
        return list(result.tools)

    async def list_prompts(self) -> list[Prompt]:
        with self._request("prompts/list"):
            result = await self.session.list_prompts()
        return list(result.prompts)

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> dict[str, Any]:
        with self._request(f"tools/call {name}"):
            result = await self.session.call_tool(name, dict(arguments))
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)

    async def get_prompt(self, name: str, arguments: Mapping[str, str]) -> dict[str, Any]:
        with self._request(f"prompts/get {name}"):
            result = await self.session.get_prompt(name, dict(arguments))
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)

    # ── Teardown ────────────────────────────────────────────────────

    async def close(self) -> bool:
        """Close the session (and stop the subprocess) once.

        Safe to call from any task.  Returns ``False`` when the connection
        was already closed.  Errors during teardown are logged, never
        raised.
        """
        if self._closed:
            return False
        self._closed = True
        try:
            await self._closer()
        except Exception:
            logger.warning("Error while closing MCP connection to %s", self.target, exc_info=True)
        logger.debug("Closed MCP connection to %s", self.target)
        return True
