"""Evented readers over a child process's stdout/stderr.

An `EventedStreamReader` pumps an async byte stream in a background task and
fans every read out to two channels:

- chunk handlers receive the raw bytes of each read (partial lines included)
- line handlers receive each completed line, decoded, without its newline

Handlers run synchronously, in stream order. Any number of consumers can
subscribe; none of them consumes the stream for the others.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import re
from collections.abc import Callable
from typing import Protocol, TypeVar

from spadev.dev.logging import DevLogComponent, get_logger
from spadev.errors import EndOfStreamError, MatchAlreadyPendingError, MatchTimeoutError

__all__ = [
    "EventedStreamReader",
    "EventedStreamStringReader",
]

logger = get_logger(DevLogComponent.SERVER)

READ_CHUNK_SIZE = 4096

LineHandler = Callable[[str], None]
ChunkHandler = Callable[[bytes], None]
Unsubscribe = Callable[[], None]

_T = TypeVar("_T")


class ByteStream(Protocol):
    """Anything with an asyncio.StreamReader-style read()."""

    async def read(self, n: int = -1) -> bytes: ...


class _PendingMatch:
    """A one-shot wait for a pattern in text seen since the wait began.

    With `keep` set (literal patterns), only the last `keep` characters are
    carried between reads: enough to match a marker split across two reads.
    """

    def __init__(
        self,
        pattern: re.Pattern[str],
        future: asyncio.Future[str],
        keep: int | None = None,
    ) -> None:
        self.pattern = pattern
        self.future = future
        self.keep = keep
        self.text = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes) -> None:
        if self.future.done():
            return
        self.text += self._decoder.decode(chunk)
        match = self.pattern.search(self.text)
        if match is not None:
            self.future.set_result(match.group(0))
        elif self.keep is not None:
            self.text = self.text[-self.keep :] if self.keep else ""


class EventedStreamReader:
    """Reads a byte stream in the background and publishes line/chunk events.

    Must be created inside a running event loop. Reading starts at the next
    suspension point, so handlers subscribed right after construction see the
    whole stream.
    """

    def __init__(
        self,
        stream: ByteStream,
        *,
        name: str = "stream",
        chunk_size: int = READ_CHUNK_SIZE,
    ) -> None:
        self.name: str = name
        self._stream = stream
        self._chunk_size = chunk_size
        self._line_handlers: list[LineHandler] = []
        self._chunk_handlers: list[ChunkHandler] = []
        self._line_buffer = bytearray()
        self._pending: _PendingMatch | None = None
        self._closed = False
        self._task: asyncio.Task[None] = asyncio.create_task(
            self._read_loop(), name=f"spadev-{name}-reader"
        )

    @property
    def closed(self) -> bool:
        """True once the underlying stream has ended."""
        return self._closed

    def on_line(self, handler: LineHandler) -> Unsubscribe:
        """Subscribe to complete lines. Returns a callable that unsubscribes."""
        self._line_handlers.append(handler)
        return lambda: self._unsubscribe(self._line_handlers, handler)

    def on_chunk(self, handler: ChunkHandler) -> Unsubscribe:
        """Subscribe to raw chunks. Returns a callable that unsubscribes."""
        self._chunk_handlers.append(handler)
        return lambda: self._unsubscribe(self._chunk_handlers, handler)

    async def wait_for_match(
        self, pattern: str | re.Pattern[str], timeout: float | None = None
    ) -> str:
        """Wait until text read from now on matches `pattern`.

        A `str` pattern is matched as a literal, case-sensitive substring; a
        compiled pattern is searched as-is. Text that arrived before the call
        is not considered.

        Args:
            pattern: Substring or compiled regex to look for
            timeout: Seconds to wait, None to wait for as long as the stream lives

        Returns:
            The matched text

        Raises:
            MatchAlreadyPendingError: Another wait is outstanding on this reader
            MatchTimeoutError: The deadline elapsed first
            EndOfStreamError: The stream ended first
        """
        if self._pending is not None:
            raise MatchAlreadyPendingError(
                f"A match is already pending on {self.name}; wait for it to finish first."
            )
        compiled = (
            pattern if isinstance(pattern, re.Pattern) else re.compile(re.escape(pattern))
        )
        if self._closed:
            raise EndOfStreamError(
                f"{self.name} has already ended; '{compiled.pattern}' can no longer appear."
            )

        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._pending = _PendingMatch(
            compiled,
            future,
            keep=None if isinstance(pattern, re.Pattern) else max(len(pattern) - 1, 0),
        )
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as exc:
            raise MatchTimeoutError(
                f"'{compiled.pattern}' did not appear on {self.name} "
                f"within {timeout:g} seconds."
            ) from exc
        finally:
            self._pending = None

    async def wait_closed(self, timeout: float | None = None) -> bool:
        """Wait until the stream has been read to the end.

        Returns:
            True if the stream ended, False if the timeout elapsed first
        """
        await asyncio.wait({self._task}, timeout=timeout)
        return self._closed

    async def _read_loop(self) -> None:
        try:
            while True:
                chunk = await self._stream.read(self._chunk_size)
                if not chunk:
                    break
                self._handle_chunk(chunk)
        except (OSError, ValueError) as e:
            # A broken pipe ends the stream just like EOF does.
            logger.warning(f"Reading {self.name} failed: {e}")
        finally:
            self._handle_end()

    def _handle_chunk(self, chunk: bytes) -> None:
        self._dispatch(self._chunk_handlers, chunk)
        if self._pending is not None:
            self._pending.feed(chunk)

        self._line_buffer.extend(chunk)
        start = 0
        newline = self._line_buffer.find(b"\n", start)
        while newline >= 0:
            self._dispatch(
                self._line_handlers, self._decode_line(self._line_buffer[start:newline])
            )
            start = newline + 1
            newline = self._line_buffer.find(b"\n", start)
        del self._line_buffer[:start]

    def _handle_end(self) -> None:
        # Don't drop an unterminated last line.
        if self._line_buffer:
            remainder = self._decode_line(self._line_buffer)
            self._line_buffer.clear()
            self._dispatch(self._line_handlers, remainder)

        self._closed = True
        pending = self._pending
        if pending is not None and not pending.future.done():
            pending.future.set_exception(
                EndOfStreamError(
                    f"{self.name} ended before '{pending.pattern.pattern}' appeared."
                )
            )

    def _dispatch(self, handlers: list[Callable[[_T], None]], event: _T) -> None:
        # Copy so handlers may unsubscribe while being called.
        for handler in list(handlers):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Handler for {self.name} raised")

    @staticmethod
    def _decode_line(raw: bytes | bytearray) -> str:
        line = bytes(raw).decode("utf-8", errors="replace")
        return line[:-1] if line.endswith("\r") else line

    @staticmethod
    def _unsubscribe(handlers: list[Callable[[_T], None]], handler: Callable[[_T], None]) -> None:
        with contextlib.suppress(ValueError):
            handlers.remove(handler)


class EventedStreamStringReader:
    """Captures every line seen on a reader, e.g. stderr for error messages.

    Example:
        with EventedStreamStringReader(runner.stderr) as stderr_capture:
            ...
            message += stderr_capture.read_as_string()
    """

    def __init__(self, reader: EventedStreamReader) -> None:
        self._parts: list[str] = []
        self._unsubscribe: Unsubscribe = reader.on_line(self._on_line)

    def _on_line(self, line: str) -> None:
        self._parts.append(f"{line}\n")

    def read_as_string(self) -> str:
        return "".join(self._parts)

    def close(self) -> None:
        self._unsubscribe()

    def __enter__(self) -> EventedStreamStringReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
