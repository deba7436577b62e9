"""Abstract base for streaming chat-completion providers."""

from __future__ import annotations

import abc
from typing import Any

import httpx


class BaseProvider(abc.ABC):
    """Contract every provider implements.

    Providers only open the HTTP stream; status handling, retries and stream
    reading belong to the fallback orchestrator.
    """

    name: str = "base"
    completions_path: str = "/chat/completions"

    def __init__(self, *, base_url: str, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @abc.abstractmethod
    def headers(self) -> dict[str, str]:
        """Headers sent with every request (credentials included)."""

    def client(self, timeout_seconds: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers(),
            timeout=httpx.Timeout(timeout_seconds),
            transport=self._transport,
        )

    async def open_stream(self, client: httpx.AsyncClient, body: dict[str, Any]) -> httpx.Response:
        """POST *body* and return the response with its body still unread."""
        request = client.build_request("POST", self.completions_path, json=body)
        return await client.send(request, stream=True)
