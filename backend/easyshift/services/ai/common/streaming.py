"""Server-sent-event reader for streamed chat completions."""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, Awaitable, Callable

import httpx

from .errors import StreamError

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"


@dataclass(frozen=True)
class StreamReadResult:
    text: str
    truncated: bool
    chunk_count: int
    event_count: int
    finish_reason: str | None = None


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or "Unknown error")
    return str(error) or "Unknown error"


class StreamAccumulator:
    """Incremental SSE line parser that enforces a content ceiling."""

    def __init__(self, max_chars: int) -> None:
        self.max_chars = max_chars
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._content: list[str] = []
        self._tool_args: list[str] = []
        self._length = 0
        self.event_count = 0
        self.done = False
        self.truncated = False
        self.finish_reason: str | None = None

    @property
    def stopped(self) -> bool:
        return self.done or self.truncated

    def feed(self, chunk: bytes) -> None:
        self._buffer += self._decoder.decode(chunk)
        self._drain_lines()

    def finish(self) -> None:
        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer and not self.stopped:
            # A final event without a trailing newline is still an event.
            self._buffer += "\n"
            self._drain_lines()
        self._buffer = ""

    def text(self) -> str:
        content = "".join(self._content)
        if content:
            return content
        return "".join(self._tool_args)

    def _drain_lines(self) -> None:
        while not self.stopped:
            newline = self._buffer.find("\n")
            if newline == -1:
                return
            line = self._buffer[:newline].strip()
            self._buffer = self._buffer[newline + 1 :]
            self._handle_line(line)

    def _handle_line(self, line: str) -> None:
        if not line or line.startswith(":"):
            return
        if not line.startswith("data:"):
            return
        data = line[5:].strip()
        if data == DONE_MARKER:
            self.done = True
            return
        try:
            event = json.loads(data)
        except ValueError:
            logger.debug("Skipping non-JSON stream line: %.80s", data)
            return
        if not isinstance(event, dict):
            return

        self.event_count += 1
        if event.get("error"):
            raise StreamError(
                f"Stream error: {_error_message(event['error'])}",
                details={"event": event["error"]},
            )

        choices = event.get("choices") or []
        choice = choices[0] if choices and isinstance(choices[0], dict) else {}
        delta = choice.get("delta") or {}

        content = delta.get("content")
        if content:
            self._append(self._content, content)

        for tool_call in delta.get("tool_calls") or []:
            arguments = ((tool_call or {}).get("function") or {}).get("arguments")
            if arguments and not self.truncated:
                self._append(self._tool_args, arguments)

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            self.finish_reason = finish_reason
            if finish_reason == "error":
                raise StreamError("Stream terminated with error")

    def _append(self, target: list[str], piece: str) -> None:
        if self.truncated:
            return
        if self._length + len(piece) > self.max_chars:
            logger.warning(
                "Content size limit reached (%d chars), truncating response after %d chars",
                self.max_chars,
                self._length,
            )
            self.truncated = True
            return
        target.append(piece)
        self._length += len(piece)


async def consume(
    chunks: AsyncIterable[bytes],
    *,
    max_chars: int,
    close: Callable[[], Awaitable[None]] | None = None,
) -> StreamReadResult:
    """Reassemble streamed text from *chunks*.

    Stops at the ``[DONE]`` marker or when *max_chars* would be exceeded, in which
    case the partial text is returned with ``truncated=True``. *close* is always
    awaited before returning or raising.
    """
    accumulator = StreamAccumulator(max_chars)
    chunk_count = 0
    try:
        async for chunk in chunks:
            chunk_count += 1
            accumulator.feed(chunk)
            if accumulator.stopped:
                break
        accumulator.finish()
    finally:
        if close is not None:
            try:
                await close()
            except (httpx.HTTPError, RuntimeError):
                logger.debug("Ignoring error while closing stream", exc_info=True)

    text = accumulator.text()
    logger.info(
        "Stream completed: %d chars from %d chunks (truncated=%s)",
        len(text),
        chunk_count,
        accumulator.truncated,
    )
    return StreamReadResult(
        text=text,
        truncated=accumulator.truncated,
        chunk_count=chunk_count,
        event_count=accumulator.event_count,
        finish_reason=accumulator.finish_reason,
    )


async def consume_response(response: httpx.Response, *, max_chars: int) -> StreamReadResult:
    return await consume(response.aiter_bytes(), max_chars=max_chars, close=response.aclose)
