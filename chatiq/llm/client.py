"""Completion client — one call per turn plus an optional verification pass.

``complete()`` never raises. Every failure is turned into a fallback string
that the caller stores as the bot's message, so the session history doubles
as the error log.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import TYPE_CHECKING

from chatiq.errors import CompletionTransportError
from chatiq.llm.backends import get_backend
from chatiq.llm.policies import verification_policy
from chatiq.llm.types import Turn

if TYPE_CHECKING:
    from chatiq.llm.backends import CompletionBackend
    from chatiq.llm.policies import QueryPolicy
    from chatiq.llm.types import ImageAttachment

logger = logging.getLogger(__name__)

TRANSPORT_FALLBACK = "Failed to connect to the AI service."
EMPTY_FALLBACK = "Sorry, I received an empty response from the AI."
UNCONFIGURED_FALLBACK = "AI service is not configured. Please check your settings."
ERROR_PREFIX = "Error from AI service: "

VERIFICATION_PROMPT = """\
Please verify the following statement for accuracy and completeness based on your \
knowledge. If it is inaccurate, provide a corrected and improved response. If it is \
accurate, just repeat the original response.
USER QUERY: {query}
RESPONSE: {response}"""

_KEY_POINT_RE = re.compile(r"^🔑 [^\n]+$", re.MULTILINE)


def extract_key_points(text: str) -> str | None:
    """Collect the answer's key-point lines into a summary block."""
    matches = _KEY_POINT_RE.findall(text)
    if not matches:
        return None
    return "KEY POINTS:\n" + "\n".join(matches)


class CompletionClient:
    """Calls a completion backend and converts every outcome into text.

    Args:
        backend: The remote service, or None when no backend is configured.
        verification: Policy selecting queries that get a self-check pass.
    """

    def __init__(
        self,
        backend: CompletionBackend | None,
        verification: QueryPolicy | None = None,
    ) -> None:
        self._backend = backend
        self._verification = verification

    @property
    def configured(self) -> bool:
        return self._backend is not None

    async def complete(
        self,
        turns: list[Turn],
        image: ImageAttachment | None = None,
        *,
        query: str = "",
    ) -> str:
        """Return the bot's reply for *turns*, or a fallback string.

        Args:
            turns: Ordered request turns; the last one is the current user turn.
            image: Attached to the last turn if it doesn't carry one already.
            query: The user's raw query, used by the verification policy.
        """
        if image is not None and turns and turns[-1].image is None:
            turns = [*turns[:-1], replace(turns[-1], image=image)]

        text, ok = await self._generate(turns)
        if ok and self._verification is not None and self._verification.matches(query):
            text = await self._verify(query, text)
        return text

    async def _generate(self, turns: list[Turn]) -> tuple[str, bool]:
        """Run one backend call. Returns ``(text, succeeded)``."""
        if self._backend is None:
            return UNCONFIGURED_FALLBACK, False

        try:
            result = await self._backend.generate(turns)
        except CompletionTransportError:
            logger.exception("Completion service unreachable")
            return TRANSPORT_FALLBACK, False
        except Exception:
            logger.exception("Completion call failed unexpectedly")
            return TRANSPORT_FALLBACK, False

        if not result.ok:
            return f"{ERROR_PREFIX}{result.error_detail}", False
        if not result.text.strip():
            return EMPTY_FALLBACK, False
        return result.text, True

    async def _verify(self, query: str, answer: str) -> str:
        """Ask the model to check its own answer. Keeps *answer* on any failure."""
        prompt = VERIFICATION_PROMPT.format(query=query, response=answer)
        try:
            result = await self._backend.generate([Turn(role="user", text=prompt)])
        except Exception:
            logger.warning("Verification pass failed; keeping original answer", exc_info=True)
            return answer

        if result.ok and result.text.strip():
            logger.info("Verification pass replaced answer (%d chars)", len(result.text))
            return result.text
        logger.info("Verification pass returned nothing usable; keeping original answer")
        return answer


_client: CompletionClient | None = None


def get_completion_client() -> CompletionClient:
    """Lazily build the completion client from settings."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = CompletionClient(get_backend(), verification=verification_policy())
    return _client
