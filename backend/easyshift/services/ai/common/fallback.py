"""Fallback orchestrator: walks a model registry until one model streams back text.

Models are tried strictly one at a time in registry order. Per response:

* 429: retry the same model after ``base * 2**attempt`` seconds while its budget lasts.
* 5xx or a connection failure: retry within the budget, then move on.
* 403, moderation blocks and other 4xx: move on immediately.
* Timeouts, stream errors and empty streams: move on immediately.

The first 2xx whose stream yields text wins, truncated or not.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Awaitable, Callable, Sequence

import httpx

from .errors import AllModelsExhausted, ProviderRejection, StreamError, TransportError
from .providers import BaseProvider
from .registry import ModelCandidate
from .streaming import StreamReadResult, consume_response

logger = logging.getLogger(__name__)

BodyBuilder = Callable[[ModelCandidate], dict[str, Any]]
Sleep = Callable[[float], Awaitable[Any]]

_MODERATION_MARKERS = ("moderation", "flagged")


class OrchestratorState(StrEnum):
    IDLE = "idle"
    TRYING_MODEL = "trying_model"
    SUCCESS = "success"
    ALL_EXHAUSTED = "all_exhausted"


class AttemptOutcome(StrEnum):
    SUCCESS = "success"
    TRUNCATED = "truncated"
    RATE_LIMITED = "rate_limited"
    MODERATION = "moderation"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    TRANSPORT_ERROR = "transport_error"
    STREAM_ERROR = "stream_error"
    EMPTY = "empty"


_RETRYABLE = {AttemptOutcome.RATE_LIMITED, AttemptOutcome.SERVER_ERROR, AttemptOutcome.TRANSPORT_ERROR}


@dataclass(frozen=True)
class AttemptRecord:
    model_name: str
    model_id: str
    attempt: int
    elapsed_ms: float
    outcome: AttemptOutcome
    status_code: int | None = None
    detail: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "model": self.model_id,
            "attempt": self.attempt,
            "elapsedMs": self.elapsed_ms,
            "outcome": self.outcome.value,
            "statusCode": self.status_code,
        }


@dataclass(frozen=True)
class FallbackOutcome:
    text: str
    truncated: bool
    model: ModelCandidate
    attempted_models: list[str]
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def model_used(self) -> str:
        return self.model.id


def classify_rejection(status_code: int, body_preview: str) -> str:
    if status_code == 429:
        return ProviderRejection.RATE_LIMITED
    if status_code >= 500:
        return ProviderRejection.SERVER_ERROR
    lowered = body_preview.lower()
    if status_code == 403 or any(marker in lowered for marker in _MODERATION_MARKERS):
        return ProviderRejection.MODERATION
    return ProviderRejection.CLIENT_ERROR


class FallbackOrchestrator:
    def __init__(
        self,
        provider: BaseProvider,
        models: Sequence[ModelCandidate],
        build_body: BodyBuilder,
        *,
        max_content_chars: int,
        timeout_seconds: float,
        backoff_base_seconds: float = 1.0,
        sleep: Sleep = asyncio.sleep,
        scope: str = "extraction",
    ) -> None:
        if not models:
            raise ValueError("FallbackOrchestrator needs at least one model")
        self.provider = provider
        self.models = list(models)
        self.build_body = build_body
        self.max_content_chars = max_content_chars
        self.timeout_seconds = timeout_seconds
        self.backoff_base_seconds = backoff_base_seconds
        self._sleep = sleep
        self.scope = scope
        self.state = OrchestratorState.IDLE
        self.current_index: int | None = None
        self.attempts: list[AttemptRecord] = []

    async def run(self) -> FallbackOutcome:
        self.state = OrchestratorState.IDLE
        self.attempts = []
        attempted_models: list[str] = []

        async with self.provider.client(self.timeout_seconds) as client:
            for index, model in enumerate(self.models):
                self.state = OrchestratorState.TRYING_MODEL
                self.current_index = index
                if model.id not in attempted_models:
                    attempted_models.append(model.id)

                result = await self._try_model(client, model)
                if result is not None:
                    self.state = OrchestratorState.SUCCESS
                    return FallbackOutcome(
                        text=result.text,
                        truncated=result.truncated,
                        model=model,
                        attempted_models=attempted_models,
                        attempts=list(self.attempts),
                    )
                logger.warning("[%s] %s failed, trying next model", self.scope, model.name)

        self.state = OrchestratorState.ALL_EXHAUSTED
        logger.error("[%s] all %d models failed", self.scope, len(self.models))
        raise AllModelsExhausted(attempted_models)

    async def _try_model(self, client: httpx.AsyncClient, model: ModelCandidate) -> StreamReadResult | None:
        budget = max(1, model.max_retries)
        for attempt in range(1, budget + 1):
            started = time.monotonic()
            status_code: int | None = None
            detail = ""
            result: StreamReadResult | None = None
            try:
                result = await asyncio.wait_for(self._attempt(client, model), timeout=self.timeout_seconds)
            except ProviderRejection as exc:
                outcome = AttemptOutcome(exc.kind)
                status_code = exc.status_code
                detail = exc.body_preview
            except (asyncio.TimeoutError, TransportError) as exc:
                timed_out = not isinstance(exc, TransportError) or exc.timeout
                outcome = AttemptOutcome.TIMEOUT if timed_out else AttemptOutcome.TRANSPORT_ERROR
                detail = str(exc)
            except StreamError as exc:
                outcome = AttemptOutcome.STREAM_ERROR
                detail = exc.error
            else:
                if not result.text.strip():
                    outcome = AttemptOutcome.EMPTY
                elif result.truncated:
                    outcome = AttemptOutcome.TRUNCATED
                else:
                    outcome = AttemptOutcome.SUCCESS

            record = AttemptRecord(
                model_name=model.name,
                model_id=model.id,
                attempt=attempt,
                elapsed_ms=round((time.monotonic() - started) * 1000, 2),
                outcome=outcome,
                status_code=status_code,
                detail=detail[:300],
            )
            self._log_attempt(record, budget)
            self.attempts.append(record)

            if outcome in (AttemptOutcome.SUCCESS, AttemptOutcome.TRUNCATED):
                return result
            if outcome not in _RETRYABLE or attempt >= budget:
                return None

            delay = self.backoff_base_seconds * (2**attempt)
            logger.info("[%s] %s retrying in %.1fs", self.scope, model.name, delay)
            await self._sleep(delay)
        return None

    async def _attempt(self, client: httpx.AsyncClient, model: ModelCandidate) -> StreamReadResult:
        body = self.build_body(model)
        try:
            response = await self.provider.open_stream(client, body)
        except httpx.TimeoutException as exc:
            raise TransportError(f"provider timeout: {exc}", timeout=True) from exc
        except httpx.TransportError as exc:
            raise TransportError(f"provider transport error: {exc}") from exc

        if not response.is_success:
            try:
                raw = await response.aread()
            except httpx.HTTPError:
                raw = b""
            finally:
                await response.aclose()
            preview = raw[:300].decode("utf-8", errors="replace")
            raise ProviderRejection(
                response.status_code,
                classify_rejection(response.status_code, preview),
                preview,
            )

        try:
            return await consume_response(response, max_chars=self.max_content_chars)
        except httpx.TimeoutException as exc:
            raise TransportError(f"stream timeout: {exc}", timeout=True) from exc
        except httpx.TransportError as exc:
            raise TransportError(f"stream transport error: {exc}") from exc

    def _log_attempt(self, record: AttemptRecord, budget: int) -> None:
        if record.outcome in (AttemptOutcome.SUCCESS, AttemptOutcome.TRUNCATED):
            log = logger.info
        elif record.outcome == AttemptOutcome.SERVER_ERROR:
            log = logger.error
        else:
            log = logger.warning
        log(
            "[%s] %s attempt %d/%d: %s status=%s elapsed_ms=%.0f",
            self.scope,
            record.model_name,
            record.attempt,
            budget,
            record.outcome.value,
            record.status_code,
            record.elapsed_ms,
        )
