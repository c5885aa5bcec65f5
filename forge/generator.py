"""Schema-enforced forecast generation with bounded retries.

A generation run is an explicit state machine::

    REQUESTING ──> VALIDATING ──> SUCCEEDED
        │   ^           │
        v   │           v
      RETRYING <────────┘
        │                \\
        v                 v
    FAILED_TRANSPORT   FAILED_SCHEMA

Two independent counters bound it:

- ``schema_attempts`` counts responses that reached validation.  After a
  rejected response the next request carries a correction instruction that
  gets more explicit each time; the rejected payload itself is never
  reused.  Reaching ``max_schema_attempts`` rejections raises
  :class:`GenerationSchemaError`.
- ``transport_attempts`` counts consecutive transport failures (timeout,
  connection error, rate limit, 5xx) for the current request.  They are
  retried with exponential backoff; reaching ``max_transport_attempts``
  raises :class:`GenerationUnavailableError`.

The whole run is bounded by ``deadline_seconds``.  Cancelling the awaiting
task cancels the in-flight call or backoff sleep, so an abandoned request
never leaves a retry loop behind.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError

from forge.config import GeneratorSettings
from forge.errors import GenerationSchemaError, GenerationUnavailableError
from forge.llm import LLMCallError
from forge.prompts import GenerationRequest, correction_instruction
from forge.schemas import AIForecastContent

log = logging.getLogger(__name__)


class GenerationState(str, Enum):
    REQUESTING = "requesting"
    VALIDATING = "validating"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED_SCHEMA = "failed_schema"
    FAILED_TRANSPORT = "failed_transport"


TERMINAL_STATES = frozenset({
    GenerationState.SUCCEEDED, GenerationState.FAILED_SCHEMA, GenerationState.FAILED_TRANSPORT,
})

_TRANSITIONS: dict[GenerationState, frozenset[GenerationState]] = {
    GenerationState.REQUESTING: frozenset({
        GenerationState.VALIDATING, GenerationState.RETRYING, GenerationState.FAILED_TRANSPORT,
    }),
    GenerationState.VALIDATING: frozenset({
        GenerationState.SUCCEEDED, GenerationState.RETRYING, GenerationState.FAILED_SCHEMA,
    }),
    GenerationState.RETRYING: frozenset({
        GenerationState.REQUESTING, GenerationState.FAILED_TRANSPORT,
    }),
}


@dataclass
class GenerationRun:
    """Inspectable state of one generation: current state, counters and history."""
    state: GenerationState = GenerationState.REQUESTING
    schema_attempts: int = 0
    transport_attempts: int = 0
    transport_failures: int = 0
    calls: int = 0
    last_errors: list[str] = field(default_factory=list)
    history: list[GenerationState] = field(default_factory=lambda: [GenerationState.REQUESTING])

    def transition(self, new: GenerationState) -> None:
        if new not in _TRANSITIONS.get(self.state, frozenset()):
            raise RuntimeError(f"Invalid generation transition {self.state.value} -> {new.value}")
        self.state = new
        self.history.append(new)


@dataclass(frozen=True)
class GenerationResult:
    content: AIForecastContent
    run: GenerationRun
    model: str


def format_validation_errors(exc: ValidationError) -> list[str]:
    out: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "(root)"
        out.append(f"{loc}: {err.get('msg', 'invalid')}")
    return out


def validate_content(raw: Any, direction: str) -> AIForecastContent:
    """Validate a raw model payload against the forecast schema for ``direction``."""
    return AIForecastContent.model_validate(raw, context={"direction": direction})


class AIForecastGenerator:
    """Drive a model client until it produces schema-valid forecast content."""

    def __init__(
        self,
        client: Any,
        settings: GeneratorSettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.settings = settings or GeneratorSettings.from_env()
        self._sleep = sleep

    def backoff_delay(self, transport_attempts: int) -> float:
        s = self.settings
        return min(s.backoff_max_seconds, s.backoff_seconds * (2 ** (transport_attempts - 1)))

    async def generate(self, request: GenerationRequest, run: GenerationRun | None = None) -> GenerationResult:
        """Generate validated content for ``request``.

        Pass ``run`` to observe the state machine from the caller (tests do).

        Raises:
            GenerationSchemaError: every allowed attempt failed validation.
            GenerationUnavailableError: transport retries or the deadline were exhausted.
        """
        run = run or GenerationRun()
        try:
            async with asyncio.timeout(self.settings.deadline_seconds):
                return await self._run(request, run)
        except TimeoutError as exc:
            if run.state not in TERMINAL_STATES:
                self._fail_transport(run)
            raise GenerationUnavailableError(
                f"Forecast generation exceeded {self.settings.deadline_seconds}s deadline",
                attempts=run.calls,
            ) from exc

    def _fail_transport(self, run: GenerationRun) -> None:
        if run.state == GenerationState.VALIDATING:
            run.transition(GenerationState.RETRYING)
        run.transition(GenerationState.FAILED_TRANSPORT)

    async def _run(self, request: GenerationRequest, run: GenerationRun) -> GenerationResult:
        s = self.settings
        while True:
            user = request.user
            if run.schema_attempts:
                user += "\n" + correction_instruction(run.schema_attempts + 1, run.last_errors, request.direction)

            run.calls += 1
            raw: Any = None
            response_error: str | None = None
            try:
                raw = await asyncio.wait_for(self.client.call(request.system, user), timeout=s.call_timeout_seconds)
            except LLMCallError as exc:
                if exc.kind == "response":
                    response_error = str(exc)
                elif exc.kind == "fatal":
                    run.transition(GenerationState.FAILED_TRANSPORT)
                    raise GenerationUnavailableError(str(exc), attempts=run.calls) from exc
                else:
                    await self._transport_retry(request, run, str(exc))
                    continue
            except TimeoutError:
                await self._transport_retry(request, run, f"call timed out after {s.call_timeout_seconds}s")
                continue

            run.transport_attempts = 0
            run.transition(GenerationState.VALIDATING)
            run.schema_attempts += 1
            try:
                if response_error is not None:
                    errors = [response_error]
                else:
                    content = validate_content(raw, request.direction)
                    run.transition(GenerationState.SUCCEEDED)
                    log.info(
                        "Forecast content for feature %s validated on attempt %d (tag=%s)",
                        request.feature_id, run.schema_attempts, request.generation_tag,
                    )
                    return GenerationResult(content=content, run=run, model=getattr(self.client, "model", ""))
            except ValidationError as exc:
                errors = format_validation_errors(exc)

            run.last_errors = errors
            if run.schema_attempts >= s.max_schema_attempts:
                run.transition(GenerationState.FAILED_SCHEMA)
                log.warning(
                    "Forecast schema validation failed %d times for feature %s (tag=%s): %s",
                    run.schema_attempts, request.feature_id, request.generation_tag, errors[:3],
                )
                raise GenerationSchemaError(
                    f"Model output failed schema validation after {run.schema_attempts} attempts",
                    attempts=run.schema_attempts, errors=errors,
                )
            log.warning(
                "Schema attempt %d/%d rejected for feature %s: %s",
                run.schema_attempts, s.max_schema_attempts, request.feature_id, errors[:3],
            )
            run.transition(GenerationState.RETRYING)
            run.transition(GenerationState.REQUESTING)

    async def _transport_retry(self, request: GenerationRequest, run: GenerationRun, reason: str) -> None:
        run.transport_attempts += 1
        run.transport_failures += 1
        if run.transport_attempts >= self.settings.max_transport_attempts:
            run.transition(GenerationState.FAILED_TRANSPORT)
            log.warning(
                "Model unavailable for feature %s after %d attempts: %s",
                request.feature_id, run.transport_attempts, reason,
            )
            raise GenerationUnavailableError(
                f"Model unavailable after {run.transport_attempts} attempts: {reason}",
                attempts=run.transport_attempts,
            )
        run.transition(GenerationState.RETRYING)
        delay = self.backoff_delay(run.transport_attempts)
        log.warning(
            "Transport attempt %d/%d failed for feature %s (%s), retrying in %.1fs",
            run.transport_attempts, self.settings.max_transport_attempts, request.feature_id, reason, delay,
        )
        await self._sleep(delay)
        run.transition(GenerationState.REQUESTING)
