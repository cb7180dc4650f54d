"""Content store client calling list/read tools on an MCP server.

The server runs as a stdio subprocess driven by the ``mcp`` client SDK. The
SDK is asynchronous, so each :class:`StdioToolTransport` owns a private
event loop on a daemon thread and exposes blocking tool calls to the
scheduler's worker threads.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import re
import threading
from datetime import timedelta
from typing import (
    IO,
    Any,
    Callable,
    Mapping,
    Protocol,
    Sequence,
    runtime_checkable,
)

from mcp import ClientSession, StdioServerParameters, types
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError

from notevec.core.config import ContentStoreSettings
from notevec.core.logging import Logger, get_logger
from notevec.modules.embeddings.errors import ConfigError, ContentStoreError
from notevec.modules.embeddings.models import Note

__all__ = [
    "ContentStore",
    "ContentStoreFactory",
    "StdioToolTransport",
    "ToolContentStore",
    "parse_note_listing",
    "stdio_content_store_factory",
]

_FILE_MARKER = "\N{PAGE FACING UP}"
_NOTE_PATH = re.compile(r"\s(\S+\.md)\s*$")
_RESULT_GRACE = 1.0
_SHUTDOWN_TIMEOUT = 5.0


@runtime_checkable
class ContentStore(Protocol):
    """Boundary contract for the note store."""

    def list_notes(self, project: str) -> Sequence[str]:
        """Return note identifiers for ``project`` in listing order."""

    def read_note(self, project: str, identifier: str) -> Note:
        """Return the note ``identifier`` with its content hash."""

    def close(self) -> None:
        """Release the underlying connection."""


ContentStoreFactory = Callable[[], ContentStore]


def parse_note_listing(text: str) -> tuple[str, ...]:
    """Extract note identifiers from a directory listing.

    Text listings mark files with a page emoji; the ``.md`` path before any
    ``|`` column separator becomes the identifier without its extension.
    JSON payloads of the form ``{"notes": [...]}`` are accepted as well.
    Duplicates are dropped preserving first occurrence.

    Example:
        >>> listing = "\N{PAGE FACING UP} a.md | 1KB"
        >>> parse_note_listing(listing)
        ('a',)
    """

    stripped = text.strip()
    if stripped.startswith("{"):
        try:
            payload = json.loads(stripped)
        except ValueError:
            payload = None
        if isinstance(payload, Mapping):
            return _dedupe(_json_identifiers(payload.get("notes", ())))

    found: list[str] = []
    for line in text.splitlines():
        if _FILE_MARKER not in line:
            continue
        head = line.split("|", 1)[0]
        match = _NOTE_PATH.search(head)
        if match is None:
            continue
        found.append(match.group(1)[: -len(".md")])
    return _dedupe(found)


def _json_identifiers(entries: Any) -> list[str]:
    identifiers: list[str] = []
    for entry in entries or ():
        if isinstance(entry, str):
            identifiers.append(entry)
        elif isinstance(entry, Mapping):
            value = entry.get("identifier") or entry.get("permalink")
            if value:
                identifiers.append(str(value))
    return identifiers


def _dedupe(values: Sequence[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(value for value in values if value))


class StdioToolTransport:
    """A persistent MCP client session with a tool-call subprocess.

    Calls may come from several threads at once; each is scheduled on the
    transport's event loop. :meth:`close` fails every in-flight call
    immediately instead of letting it wait out ``request_timeout``.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        request_timeout: float = 30.0,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        logger: Logger | None = None,
    ) -> None:
        if not command:
            raise ConfigError("content_store.command cannot be empty")
        self.command = tuple(command)
        self.request_timeout = request_timeout
        self.logger = logger or get_logger(__name__, component="content-store")
        self._env = dict(env) if env is not None else None
        self._cwd = cwd
        self._lock = threading.Lock()
        self._pending: set[concurrent.futures.Future[Any]] = set()
        self._closed = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._serving: concurrent.futures.Future[None] | None = None
        self._session: ClientSession | None = None
        self._closing: asyncio.Event | None = None
        self._errlog: IO[str] | None = None

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._session is not None
            and self._serving is not None
            and not self._serving.done()
        )

    def start(self) -> "StdioToolTransport":
        """Spawn the subprocess and complete the MCP initialize handshake.

        Raises:
            ContentStoreError: If the server cannot be started or does not
                finish the handshake within ``request_timeout``.
        """

        self._errlog = open(os.devnull, "w", encoding="utf-8")
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever,
            name="notevec-content-store",
            daemon=True,
        )
        self._thread.start()
        ready: concurrent.futures.Future[None] = concurrent.futures.Future()
        self._serving = asyncio.run_coroutine_threadsafe(
            self._serve(ready),
            self._loop,
        )
        try:
            ready.result(timeout=self.request_timeout)
        except TimeoutError as exc:
            self.close()
            raise ContentStoreError(
                f"Timed out after {self.request_timeout}s starting content "
                f"store {self.command[0]!r}."
            ) from exc
        except Exception as exc:
            self.close()
            raise ContentStoreError(
                f"Failed to start content store {self.command[0]!r}: {exc}"
            ) from exc
        self.logger.debug(
            "content-store-connected",
            command=list(self.command),
        )
        return self

    async def _serve(self, ready: concurrent.futures.Future[None]) -> None:
        params = StdioServerParameters(
            command=self.command[0],
            args=list(self.command[1:]),
            env=self._env,
            cwd=self._cwd,
        )
        try:
            async with stdio_client(params, errlog=self._errlog) as streams:
                read_stream, write_stream = streams
                async with ClientSession(
                    read_stream,
                    write_stream,
                    read_timeout_seconds=timedelta(
                        seconds=self.request_timeout
                    ),
                ) as session:
                    await session.initialize()
                    self._closing = asyncio.Event()
                    self._session = session
                    ready.set_result(None)
                    await self._closing.wait()
        except Exception as exc:
            if ready.done():
                raise
            ready.set_exception(exc)
        finally:
            self._session = None
            if not ready.done():
                ready.set_exception(
                    ContentStoreError("Content store stopped during startup.")
                )

    def call_tool(self, name: str, arguments: Mapping[str, Any]) -> str:
        """Invoke tool ``name`` and return its concatenated text content.

        Raises:
            ContentStoreError: If the connection is closed or drops, the call
                times out, or the tool reports an error result.
        """

        with self._lock:
            session, loop = self._session, self._loop
            if self._closed or session is None or loop is None:
                raise ContentStoreError(
                    "Content store connection is closed.",
                    tool=name,
                )
            future = asyncio.run_coroutine_threadsafe(
                session.call_tool(name, dict(arguments)),
                loop,
            )
            self._pending.add(future)

        try:
            result = future.result(
                timeout=self.request_timeout + _RESULT_GRACE
            )
        except concurrent.futures.CancelledError as exc:
            raise ContentStoreError(
                f"Content store connection closed while waiting for {name!r}.",
                tool=name,
            ) from exc
        except TimeoutError as exc:
            future.cancel()
            raise ContentStoreError(
                f"Timed out after {self.request_timeout}s waiting for "
                f"{name!r}.",
                tool=name,
            ) from exc
        except McpError as exc:
            raise ContentStoreError(
                f"Tool {name!r} call failed: {exc}",
                tool=name,
            ) from exc
        except Exception as exc:
            raise ContentStoreError(
                f"Content store transport failed during {name!r}: "
                f"{exc.__class__.__name__}: {exc}",
                tool=name,
            ) from exc
        finally:
            with self._lock:
                self._pending.discard(future)

        text = "\n".join(
            item.text
            for item in result.content
            if isinstance(item, types.TextContent)
        )
        if result.isError:
            raise ContentStoreError(
                f"Tool {name!r} failed: {text or 'unknown error'}",
                tool=name,
            )
        return text

    def close(self) -> None:
        """End the session, fail in-flight calls, and stop the subprocess."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
            pending = list(self._pending)
        for future in pending:
            future.cancel()

        loop, serving = self._loop, self._serving
        if loop is not None and serving is not None:
            closing = self._closing
            if closing is not None:
                loop.call_soon_threadsafe(closing.set)
            else:
                serving.cancel()
            try:
                serving.result(timeout=_SHUTDOWN_TIMEOUT)
            except Exception as exc:
                self.logger.debug(
                    "content-store-shutdown-error",
                    error=str(exc) or exc.__class__.__name__,
                )
        if loop is not None and self._thread is not None:
            loop.call_soon_threadsafe(loop.stop)
            self._thread.join(timeout=_SHUTDOWN_TIMEOUT)
            if not self._thread.is_alive():
                loop.close()
        if self._errlog is not None:
            self._errlog.close()
            self._errlog = None
        self.logger.debug(
            "content-store-closed",
            command=self.command[0],
            cancelled_calls=len(pending),
        )


class ToolContentStore:
    """:class:`ContentStore` backed by list/read tools on a transport."""

    def __init__(
        self,
        transport: StdioToolTransport,
        *,
        list_tool: str = "list_directory",
        read_tool: str = "read_note",
        list_depth: int = 10,
        logger: Logger | None = None,
    ) -> None:
        self.transport = transport
        self.list_tool = list_tool
        self.read_tool = read_tool
        self.list_depth = list_depth
        self.logger = logger or get_logger(__name__, component="content-store")

    def list_notes(self, project: str) -> tuple[str, ...]:
        text = self.transport.call_tool(
            self.list_tool,
            {
                "project": project,
                "depth": self.list_depth,
                "file_name_glob": "*.md",
            },
        )
        notes = parse_note_listing(text)
        self.logger.debug(
            "content-store-listed",
            project=project,
            notes=len(notes),
        )
        return notes

    def read_note(self, project: str, identifier: str) -> Note:
        try:
            text = self.transport.call_tool(
                self.read_tool,
                {"identifier": identifier, "project": project},
            )
        except ContentStoreError as exc:
            exc.note_id = identifier
            raise
        return Note.from_content(identifier, text)

    def close(self) -> None:
        self.transport.close()


def stdio_content_store_factory(
    settings: ContentStoreSettings,
    *,
    logger: Logger | None = None,
    env: Mapping[str, str] | None = None,
) -> ContentStoreFactory:
    """Return a factory spawning a fresh connected store on each call.

    Raises:
        ConfigError: If no content store command is configured.
    """

    if not settings.command:
        raise ConfigError(
            "content_store.command is not configured; set it in notevec.toml."
        )
    log = logger or get_logger(__name__, component="content-store")

    def _factory() -> ContentStore:
        transport = StdioToolTransport(
            settings.command,
            request_timeout=settings.request_timeout,
            env=env if env is not None else os.environ,
            logger=log,
        )
        transport.start()
        return ToolContentStore(
            transport,
            list_tool=settings.list_tool,
            read_tool=settings.read_tool,
            list_depth=settings.list_depth,
            logger=log,
        )

    return _factory
