"""Token estimation and model context limits.

``estimate_tokens`` is a deliberately crude heuristic (~4 characters per
token). It is a soft budgeting signal for the file pipeline and the fallback
for backends without a counting endpoint, never a correctness boundary.
"""

from __future__ import annotations

import math

CHARS_PER_TOKEN = 4

DEFAULT_TOKEN_LIMIT = 1_048_576

#: Context windows at or below this size count as low-capacity.
LOW_CAPACITY_TOKEN_LIMIT = 131_072

_TOKEN_LIMITS: dict[str, int] = {
    "gemini-1.5-pro": 2_097_152,
    "gemini-1.5-flash": 1_048_576,
    "gemini-2.5-pro-preview-05-06": 1_048_576,
    "gemini-2.5-pro-preview-06-05": 1_048_576,
    "gemini-2.5-pro": 1_048_576,
    "gemini-2.5-flash-preview-05-20": 1_048_576,
    "gemini-2.5-flash": 1_048_576,
    "gemini-2.0-flash": 1_048_576,
    "gemini-2.0-flash-preview-image-generation": 32_000,
    "grok-beta": 131_072,
    "grok-3-latest": 131_072,
    "grok-3-mini-latest": 131_072,
    "grok-4-latest": 131_072,
    "grok-4-mini-latest": 131_072,
}


def estimate_tokens(text: str) -> int:
    """Estimate the token count of *text* as ``ceil(len(text) / 4)``."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def tokens_to_chars(tokens: int) -> int:
    """Convert a token allowance back into a character count."""
    return max(0, tokens) * CHARS_PER_TOKEN


def token_limit(model: str) -> int:
    """Return the context window for *model*, or the default when unknown."""
    return _TOKEN_LIMITS.get(model, DEFAULT_TOKEN_LIMIT)


def is_low_capacity(model: str) -> bool:
    return token_limit(model) <= LOW_CAPACITY_TOKEN_LIMIT
