"""HTTP constants shared by provider error mapping and retry."""

from __future__ import annotations

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

XAI_BASE_URL = "https://api.x.ai/v1"
