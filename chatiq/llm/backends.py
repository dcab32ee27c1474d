"""Completion backends — Gemini over REST (httpx) and Claude (anthropic SDK).

A backend turns ordered ``Turn`` objects into a ``GenerateResult``. A
rejected request (non-success status) comes back as ``error_detail``; an
unreachable service raises ``CompletionTransportError``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import anthropic
import httpx

from chatiq.config import settings
from chatiq.errors import CompletionTransportError
from chatiq.llm.types import GenerateResult

if TYPE_CHECKING:
    from chatiq.llm.types import Turn

logger = logging.getLogger(__name__)

UNKNOWN_API_ERROR = "Unknown API error."


@runtime_checkable
class CompletionBackend(Protocol):
    """A remote text/vision completion service."""

    @property
    def name(self) -> str: ...

    async def generate(self, turns: list[Turn]) -> GenerateResult: ...


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


def _gemini_error_detail(resp: httpx.Response) -> str:
    """Pull ``error.message`` out of an error body, whatever shape it has."""
    try:
        body = resp.json()
    except ValueError:
        return UNKNOWN_API_ERROR
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return UNKNOWN_API_ERROR


def _gemini_text(data: Any) -> str:
    """Extract the first candidate's text, or empty string."""
    if not isinstance(data, dict):
        return ""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


class GeminiBackend:
    """Calls the Generative Language ``generateContent`` endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        api_base: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model or settings.gemini_model
        self._api_base = (api_base or settings.gemini_api_base).rstrip("/")
        self._timeout = timeout or settings.completion_timeout

    @property
    def name(self) -> str:
        return "gemini"

    @property
    def url(self) -> str:
        return f"{self._api_base}/{self._model}:generateContent"

    @staticmethod
    def build_payload(turns: list[Turn]) -> dict[str, Any]:
        """Serialize turns into the ``contents``/``parts`` request body."""
        contents = []
        for turn in turns:
            parts: list[dict[str, Any]] = [{"text": turn.text}]
            if turn.image is not None:
                parts.append({
                    "inlineData": {
                        "mimeType": turn.image.mime_type,
                        "data": turn.image.data,
                    }
                })
            contents.append({"role": turn.role, "parts": parts})
        return {"contents": contents}

    async def generate(self, turns: list[Turn]) -> GenerateResult:
        payload = self.build_payload(turns)
        headers = {"Content-Type": "application/json", "x-goog-api-key": self._api_key}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            msg = f"Gemini request failed: {exc}"
            raise CompletionTransportError(msg) from exc

        if not resp.is_success:
            detail = _gemini_error_detail(resp)
            logger.error("Gemini API error: status=%d detail=%s", resp.status_code, detail)
            return GenerateResult(error_detail=detail)

        try:
            data = resp.json()
        except ValueError:
            logger.warning("Gemini returned a non-JSON body (%d bytes)", len(resp.content))
            return GenerateResult()
        return GenerateResult(text=_gemini_text(data))


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


def _anthropic_error_detail(exc: anthropic.APIStatusError) -> str:
    body = exc.body
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return exc.message or UNKNOWN_API_ERROR


class AnthropicBackend:
    """Calls Claude through the async Anthropic client."""

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        max_tokens: int = 4096,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self._model = model or settings.claude_model
        self._max_tokens = max_tokens
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key, timeout=settings.completion_timeout
        )

    @property
    def name(self) -> str:
        return "anthropic"

    @staticmethod
    def build_messages(turns: list[Turn]) -> list[dict[str, Any]]:
        """Convert turns to Claude messages.

        Consecutive turns with the same role are merged and leading model
        turns are dropped, since Claude requires a user turn first.
        """
        messages: list[dict[str, Any]] = []
        for turn in turns:
            role = "user" if turn.role == "user" else "assistant"
            if not messages and role != "user":
                continue
            blocks: list[dict[str, Any]] = []
            if turn.image is not None:
                blocks.append({
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": turn.image.mime_type,
                        "data": turn.image.data,
                    },
                })
            blocks.append({"type": "text", "text": turn.text})
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"].extend(blocks)
            else:
                messages.append({"role": role, "content": blocks})
        return messages

    async def generate(self, turns: list[Turn]) -> GenerateResult:
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                messages=self.build_messages(turns),
            )
        except anthropic.APIStatusError as exc:
            detail = _anthropic_error_detail(exc)
            logger.error("Claude API error: status=%d detail=%s", exc.status_code, detail)
            return GenerateResult(error_detail=detail)
        except anthropic.APIConnectionError as exc:
            msg = f"Claude request failed: {exc}"
            raise CompletionTransportError(msg) from exc

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return GenerateResult(text=text)


def get_backend() -> CompletionBackend | None:
    """Build the configured backend, or None when it has no credentials."""
    provider = settings.completion_provider.strip().lower()
    if provider == "gemini":
        if not settings.google_api_key:
            logger.warning("Completion disabled — set GOOGLE_API_KEY to enable Gemini")
            return None
        return GeminiBackend(api_key=settings.google_api_key)
    if provider == "anthropic":
        if not settings.anthropic_api_key:
            logger.warning("Completion disabled — set ANTHROPIC_API_KEY to enable Claude")
            return None
        return AnthropicBackend(api_key=settings.anthropic_api_key)
    logger.error("Unknown COMPLETION_PROVIDER '%s'", settings.completion_provider)
    return None
