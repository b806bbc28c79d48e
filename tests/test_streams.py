"""Tests for the evented stream readers."""

from __future__ import annotations

import asyncio
import re

import pytest

from spadev.dev.streams import EventedStreamReader, EventedStreamStringReader
from spadev.errors import EndOfStreamError, MatchAlreadyPendingError, MatchTimeoutError


class ChunkedStream:
    """Returns one predefined chunk per read(), then EOF."""

    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = list(chunks)

    async def read(self, n: int = -1) -> bytes:
        await asyncio.sleep(0)
        return self._chunks.pop(0) if self._chunks else b""


def feed(stream: asyncio.StreamReader, data: bytes, *, eof: bool = False) -> None:
    stream.feed_data(data)
    if eof:
        stream.feed_eof()


class TestEvents:
    """Line/chunk fan-out."""

    @pytest.mark.asyncio
    async def test_lines_and_chunks_in_stream_order(self) -> None:
        reader = EventedStreamReader(
            ChunkedStream([b"build", b"ing...\nDO", b"NE\r\n", b"tail"])
        )
        events: list[tuple[str, object]] = []
        reader.on_chunk(lambda c: events.append(("chunk", c)))
        reader.on_line(lambda line: events.append(("line", line)))

        await reader.wait_closed()

        assert events == [
            ("chunk", b"build"),
            ("chunk", b"ing...\nDO"),
            ("line", "building..."),
            ("chunk", b"NE\r\n"),
            ("line", "DONE"),
            ("chunk", b"tail"),
            ("line", "tail"),
        ]
        assert reader.closed

    @pytest.mark.asyncio
    async def test_several_lines_in_one_chunk(self) -> None:
        reader = EventedStreamReader(ChunkedStream([b"one\ntwo\n\nthree\n"]))
        lines: list[str] = []
        reader.on_line(lines.append)

        await reader.wait_closed()

        assert lines == ["one", "two", "", "three"]

    @pytest.mark.asyncio
    async def test_fan_out_and_unsubscribe(self) -> None:
        stream = asyncio.StreamReader()
        reader = EventedStreamReader(stream)
        first: list[str] = []
        second: list[str] = []
        unsubscribe_first = reader.on_line(first.append)
        reader.on_line(second.append)

        feed(stream, b"a\n")
        await asyncio.sleep(0.01)
        unsubscribe_first()
        unsubscribe_first()  # idempotent
        feed(stream, b"b\n", eof=True)
        await reader.wait_closed()

        assert first == ["a"]
        assert second == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_delivery(self) -> None:
        reader = EventedStreamReader(ChunkedStream([b"x\n", b"y\n"]))
        seen: list[str] = []

        def broken(_: str) -> None:
            raise RuntimeError("boom")

        reader.on_line(broken)
        reader.on_line(seen.append)
        await reader.wait_closed()

        assert seen == ["x", "y"]

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_replaced(self) -> None:
        reader = EventedStreamReader(ChunkedStream([b"caf\xff\n"]))
        lines: list[str] = []
        reader.on_line(lines.append)
        await reader.wait_closed()

        assert lines == ["caf\ufffd"]

    @pytest.mark.asyncio
    async def test_wait_closed_timeout(self) -> None:
        stream = asyncio.StreamReader()
        reader = EventedStreamReader(stream)
        assert await reader.wait_closed(timeout=0.05) is False
        assert not reader.closed
        stream.feed_eof()
        assert await reader.wait_closed(timeout=1) is True


class TestWaitForMatch:
    """One-shot pattern waits."""

    @pytest.mark.asyncio
    async def test_marker_found(self) -> None:
        stream = asyncio.StreamReader()
        reader = EventedStreamReader(stream)
        feed(stream, b"build...\nDONE\n", eof=True)

        assert await reader.wait_for_match("DONE", timeout=1) == "DONE"

    @pytest.mark.asyncio
    async def test_marker_split_across_chunks(self) -> None:
        reader = EventedStreamReader(ChunkedStream([b"compiling\n DO", b"NE in 3s"]))
        assert await reader.wait_for_match("DONE", timeout=1) == "DONE"

    @pytest.mark.asyncio
    async def test_marker_is_case_sensitive_substring(self) -> None:
        stream = asyncio.StreamReader()
        reader = EventedStreamReader(stream)
        feed(stream, b"done\n", eof=True)

        with pytest.raises(EndOfStreamError):
            await reader.wait_for_match("DONE", timeout=1)

    @pytest.mark.asyncio
    async def test_literal_wait_keeps_only_a_marker_sized_tail(self) -> None:
        stream = asyncio.StreamReader()
        reader = EventedStreamReader(stream)
        wait = asyncio.create_task(reader.wait_for_match("DONE", timeout=5))
        await asyncio.sleep(0)

        for i in range(200):
            feed(stream, f"[{i:03}] compiling module {i}\n".encode() * 20)
            await asyncio.sleep(0)
        feed(stream, b"Compiled. DO")
        await asyncio.sleep(0.01)
        assert reader._pending is not None
        assert reader._pending.text == " DO"

        feed(stream, b"NE\n", eof=True)
        assert await wait == "DONE"

    @pytest.mark.asyncio
    async def test_regex_pattern(self) -> None:
        stream = asyncio.StreamReader()
        reader = EventedStreamReader(stream)
        feed(stream, b"  App running at http://localhost:5123/\n", eof=True)

        matched = await reader.wait_for_match(
            re.compile(r"localhost:\d+"), timeout=1
        )
        assert matched == "localhost:5123"

    @pytest.mark.asyncio
    async def test_end_of_stream_before_match(self) -> None:
        stream = asyncio.StreamReader()
        reader = EventedStreamReader(stream)
        feed(stream, b"build...\n", eof=True)

        with pytest.raises(EndOfStreamError):
            await reader.wait_for_match("DONE", timeout=1)

    @pytest.mark.asyncio
    async def test_already_closed_fails_immediately(self) -> None:
        reader = EventedStreamReader(ChunkedStream([b"DONE\n"]))
        await reader.wait_closed()

        with pytest.raises(EndOfStreamError):
            await reader.wait_for_match("DONE")

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        stream = asyncio.StreamReader()
        reader = EventedStreamReader(stream)
        feed(stream, b"build...\n")

        with pytest.raises(MatchTimeoutError):
            await reader.wait_for_match("DONE", timeout=0.05)
        assert not reader.closed
        stream.feed_eof()

    @pytest.mark.asyncio
    async def test_only_text_after_the_call_counts(self) -> None:
        stream = asyncio.StreamReader()
        reader = EventedStreamReader(stream)
        feed(stream, b"DONE\n")
        await asyncio.sleep(0.01)

        with pytest.raises(MatchTimeoutError):
            await reader.wait_for_match("DONE", timeout=0.05)

        feed(stream, b"DONE again\n", eof=True)
        assert await reader.wait_for_match("DONE", timeout=1) == "DONE"

    @pytest.mark.asyncio
    async def test_one_wait_at_a_time(self) -> None:
        stream = asyncio.StreamReader()
        reader = EventedStreamReader(stream)
        first = asyncio.create_task(reader.wait_for_match("DONE", timeout=1))
        await asyncio.sleep(0)

        with pytest.raises(MatchAlreadyPendingError):
            await reader.wait_for_match("DONE", timeout=1)

        feed(stream, b"DONE\n")
        assert await first == "DONE"

        # Allowed again once the first wait finished.
        feed(stream, b"READY\n", eof=True)
        assert await reader.wait_for_match("READY", timeout=1) == "READY"

    @pytest.mark.asyncio
    async def test_readers_are_independent(self) -> None:
        out_stream = asyncio.StreamReader()
        err_stream = asyncio.StreamReader()
        stdout = EventedStreamReader(out_stream, name="stdout")
        stderr = EventedStreamReader(err_stream, name="stderr")

        waits = asyncio.gather(
            stdout.wait_for_match("DONE", timeout=1),
            stderr.wait_for_match("WARN", timeout=1),
        )
        await asyncio.sleep(0)
        feed(err_stream, b"WARN deprecated\n")
        feed(out_stream, b"DONE\n")

        assert await waits == ["DONE", "WARN"]
        feed(out_stream, b"", eof=True)
        feed(err_stream, b"", eof=True)


class TestStringReader:
    """Capturing a reader's text."""

    @pytest.mark.asyncio
    async def test_captures_all_lines(self) -> None:
        reader = EventedStreamReader(
            ChunkedStream([b"Error: Cannot find module 'vue'\n", b"    at x\n", b"partial"])
        )
        with EventedStreamStringReader(reader) as capture:
            await reader.wait_closed()
            text = capture.read_as_string()

        assert text == "Error: Cannot find module 'vue'\n    at x\npartial\n"

    @pytest.mark.asyncio
    async def test_close_stops_capturing(self) -> None:
        stream = asyncio.StreamReader()
        reader = EventedStreamReader(stream)
        capture = EventedStreamStringReader(reader)

        feed(stream, b"first\n")
        await asyncio.sleep(0.01)
        capture.close()
        feed(stream, b"second\n", eof=True)
        await reader.wait_closed()

        assert capture.read_as_string() == "first\n"
