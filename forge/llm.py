"""Async model client for forecast generation (Anthropic or OpenAI-compatible)."""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

log = logging.getLogger(__name__)

# Status codes worth retrying with backoff; other 4xx codes will not improve.
_TRANSIENT_STATUS = {408, 409, 429}


class LLMCallError(Exception):
    """Model call failed or returned unparseable output.

    ``kind`` is one of:

    - ``"transport"``: timeout, connection failure, rate limit or 5xx; retry with backoff.
    - ``"response"``: the call succeeded but the body was not a JSON object.
    - ``"fatal"``: authentication or malformed request; retrying will not help.
    """

    def __init__(self, message: str, kind: str = "transport"):
        super().__init__(message)
        self.kind = kind


def classify_exception(exc: Exception) -> str:
    """Map an SDK exception to an LLMCallError kind without importing either SDK."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        if status in _TRANSIENT_STATUS or status >= 500:
            return "transport"
        return "fatal"
    return "transport"


_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse a model reply into a dict, tolerating a surrounding markdown fence."""
    text = (text or "").strip()
    m = _FENCE_RE.search(text)
    if m:
        text = m.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LLMCallError(f"Model returned invalid JSON: {text[:200]}", kind="response") from exc
    if not isinstance(data, dict):
        raise LLMCallError(f"Model returned JSON {type(data).__name__}, expected an object", kind="response")
    return data


class LLMClient:
    """Unified async client supporting Anthropic and OpenAI-compatible APIs."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        max_tokens: int = 4096,
    ):
        self.provider = provider or os.environ.get("LLM_PROVIDER", "anthropic")
        self.model = model or os.environ.get("LLM_MODEL", "")
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        if self.provider == "anthropic":
            import anthropic
            self.model = self.model or "claude-haiku-4-5-20251001"
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get("ANTHROPIC_API_KEY"),
                max_retries=0,
            )
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            self.model = self.model or "gpt-4o-mini"
            kwargs: dict[str, Any] = {"max_retries": 0}
            key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if key:
                kwargs["api_key"] = key
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
            if url:
                kwargs["base_url"] = url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")

    async def _complete(self, system: str, user: str) -> str:
        if self.provider == "anthropic":
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
            return "".join(getattr(block, "text", "") for block in response.content)
        response = await self._client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        return response.choices[0].message.content or ""

    async def call(self, system: str, user: str) -> dict[str, Any]:
        """Send system+user messages to the model and return the parsed JSON object."""
        try:
            text = await self._complete(system, user)
        except Exception as exc:
            kind = classify_exception(exc)
            raise LLMCallError(f"LLM API call failed: {exc}", kind=kind) from exc
        log.debug("LLM %s returned %d chars", self.model, len(text))
        return parse_json_object(text)
