"""Mock provider: replays scripted responses through ``httpx.MockTransport``."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx

from .base import BaseProvider


def sse_events(content: str, *, pieces: int = 4, finish_reason: str = "stop") -> bytes:
    """Encode *content* as a chat-completion event stream split into *pieces* deltas."""
    size = max(1, -(-len(content) // max(1, pieces))) if content else 1
    lines = [": OPENROUTER PROCESSING", ""]
    for start in range(0, len(content), size):
        event = {"choices": [{"index": 0, "delta": {"content": content[start : start + size]}}]}
        lines.append(f"data: {json.dumps(event)}")
        lines.append("")
    lines.append(f"data: {json.dumps({'choices': [{'index': 0, 'delta': {}, 'finish_reason': finish_reason}]})}")
    lines.append("")
    lines.append("data: [DONE]")
    lines.append("")
    return "\n".join(lines).encode("utf-8")


@dataclass
class ScriptedResponse:
    """One canned provider reply.

    ``content`` is wrapped into an event stream; ``body`` is sent verbatim.
    ``raise_exc`` simulates a transport failure instead of a reply.
    """

    status_code: int = 200
    content: str | None = None
    body: bytes | None = None
    chunk_size: int = 37
    raise_exc: type[httpx.TransportError] | None = None


class _ChunkedStream(httpx.AsyncByteStream):
    def __init__(self, owner: "MockProvider", payload: bytes, chunk_size: int) -> None:
        self._owner = owner
        self._payload = payload
        self._chunk_size = max(1, chunk_size)

    async def __aiter__(self):
        for start in range(0, len(self._payload), self._chunk_size):
            yield self._payload[start : start + self._chunk_size]

    async def aclose(self) -> None:
        self._owner.closed_streams += 1


class MockProvider(BaseProvider):
    name = "mock"

    def __init__(
        self,
        responses: list[ScriptedResponse] | None = None,
        *,
        default: ScriptedResponse | None = None,
    ) -> None:
        super().__init__(base_url="https://mock.invalid/api/v1", transport=httpx.MockTransport(self._handle))
        self._responses = list(responses or [])
        self._default = default or ScriptedResponse(status_code=503, body=b'{"error":"mock provider exhausted"}')
        self.requests: list[dict[str, Any]] = []
        self.closed_streams = 0

    def headers(self) -> dict[str, str]:
        return {"Authorization": "Bearer mock", "Content-Type": "application/json"}

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content or b"{}"))
        scripted = self._responses.pop(0) if self._responses else self._default

        if scripted.raise_exc is not None:
            raise scripted.raise_exc("mock transport failure", request=request)

        if scripted.body is not None:
            payload = scripted.body
        elif scripted.content is not None:
            payload = sse_events(scripted.content)
        else:
            payload = b""

        if scripted.status_code >= 300:
            return httpx.Response(scripted.status_code, content=payload, request=request)

        return httpx.Response(
            scripted.status_code,
            headers={"content-type": "text/event-stream"},
            stream=_ChunkedStream(self, payload, scripted.chunk_size),
            request=request,
        )

    @property
    def requested_models(self) -> list[str]:
        return [body.get("model", "") for body in self.requests]
