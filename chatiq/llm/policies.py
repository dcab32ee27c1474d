"""Pluggable predicates over the user's query."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from chatiq.config import settings


@runtime_checkable
class QueryPolicy(Protocol):
    """Decides whether a query matches some policy (needs checking, is blocked, ...)."""

    def matches(self, query: str) -> bool: ...


@dataclass(frozen=True)
class KeywordPolicy:
    """Case-insensitive substring match against a fixed keyword list."""

    keywords: tuple[str, ...]

    def matches(self, query: str) -> bool:
        if not query:
            return False
        lowered = query.lower()
        return any(keyword in lowered for keyword in self.keywords)


def verification_policy() -> QueryPolicy | None:
    """Policy selecting fact-sensitive queries, or None when verification is off."""
    if not settings.verification_enabled:
        return None
    keywords = settings.get_verify_keywords()
    return KeywordPolicy(tuple(keywords)) if keywords else None


def content_filter() -> QueryPolicy | None:
    """Policy rejecting queries with blocked words, or None when unconfigured."""
    keywords = settings.get_blocked_keywords()
    return KeywordPolicy(tuple(keywords)) if keywords else None
