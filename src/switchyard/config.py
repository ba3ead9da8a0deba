"""Configuration: frozen Config with explicit provider/model requirements."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Literal

from dotenv import load_dotenv

from switchyard.errors import ConfigurationError
from switchyard.retry import RetryPolicy

load_dotenv()

ProviderName = Literal["gemini", "openai", "grok", "mock"]

_API_KEY_ENV_VARS: dict[str, str] = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "grok": "XAI_API_KEY",
}

_DEFAULT_EMBEDDING_MODELS: dict[str, str] = {
    "gemini": "gemini-embedding-001",
    "openai": "text-embedding-3-small",
}


@dataclass(frozen=True)
class Config:
    """Immutable backend configuration.

    Provider and model are required. API keys are resolved from the standard
    environment variables when not given.

    Example:
        config = Config(provider="grok", model="grok-3-latest")
        # API key is read from XAI_API_KEY
    """

    provider: ProviderName
    model: str
    api_key: str | None = None
    #: Overrides the SDK endpoint (OpenAI-compatible backends only).
    base_url: str | None = None
    #: Defaults per provider; None where the backend has no embeddings.
    embedding_model: str | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if self.provider not in ("gemini", "openai", "grok", "mock"):
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint="Supported providers: 'gemini', 'openai', 'grok', 'mock'",
            )
        if not isinstance(self.model, str) or not self.model.strip():
            raise ConfigurationError(
                "model must be a non-empty string",
                hint="Pass model='grok-3-latest' or another backend model name.",
            )

        if self.embedding_model is None:
            object.__setattr__(
                self, "embedding_model", _DEFAULT_EMBEDDING_MODELS.get(self.provider)
            )

        if self.provider == "mock":
            return

        env_var = _API_KEY_ENV_VARS[self.provider]
        if self.api_key is None:
            object.__setattr__(self, "api_key", os.environ.get(env_var))
        if not self.api_key:
            raise ConfigurationError(
                f"API key required for {self.provider}",
                hint=f"Set {env_var} environment variable or pass api_key=...",
            )

    def __str__(self) -> str:
        return (
            f"Config(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"base_url={self.base_url!r})"
        )

    __repr__ = __str__


@dataclass(frozen=True)
class SelectionLimits:
    """Constants of the file selection pipeline."""

    #: Smart selection needs strictly more candidates than this.
    fan_out_threshold: int = 20
    max_preview_files: int = 100
    preview_lines: int = 5
    min_selected: int = 15
    max_selected: int = 20
    fallback_file_count: int = 10
    #: Held below the backend's nominal window to leave room for the conversation.
    token_budget: int = 100_000

    def __post_init__(self) -> None:
        for name in (
            "fan_out_threshold",
            "max_preview_files",
            "preview_lines",
            "max_selected",
            "fallback_file_count",
        ):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if self.token_budget < 0:
            raise ConfigurationError(
                f"token_budget must be >= 0, got {self.token_budget}"
            )
        if not 1 <= self.min_selected <= self.max_selected:
            raise ConfigurationError(
                "min_selected must be between 1 and max_selected",
                hint=f"Got min_selected={self.min_selected}, max_selected={self.max_selected}.",
            )
