"""Deterministic token estimation used for advisory UI counters."""

from __future__ import annotations

from collections.abc import Callable, Iterable

TokenEstimator = Callable[[str], int]


def estimate_tokens(text: str) -> int:
    """Estimate the token cost of ``text``.

    Roughly one token per four characters, never fewer than one per
    whitespace-separated word. Empty or whitespace-only text costs nothing.
    """
    if not text or not text.strip():
        return 0
    by_chars = (len(text) + 3) // 4
    by_words = len(text.split())
    return max(by_chars, by_words)


def total_tokens(
    contents: Iterable[str], estimator: TokenEstimator = estimate_tokens
) -> int:
    """Sum estimates over several texts."""
    return sum(max(0, int(estimator(content))) for content in contents)
