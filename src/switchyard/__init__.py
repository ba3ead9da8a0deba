"""Switchyard: one content model across Gemini, OpenAI and Grok backends.

Public API:
    - Config / get_provider(): pick and build a backend adapter
    - Message, GenerationRequest, GenerationResponse: canonical content model
    - extract_tool_calls(): recover tool calls encoded in reply text
    - FileSelectionPipeline: read many files within a token budget
"""

from __future__ import annotations

import logging

from switchyard.cancellation import CancellationToken
from switchyard.config import Config, SelectionLimits
from switchyard.content import (
    FinishReason,
    FunctionCallPart,
    FunctionResponsePart,
    GenerationRequest,
    GenerationResponse,
    InlineDataPart,
    Message,
    Part,
    TextPart,
    ThoughtPart,
    ToolDeclaration,
    Usage,
)
from switchyard.errors import (
    BackendError,
    ConfigurationError,
    ParseError,
    RateLimitError,
    SwitchyardError,
    UnsupportedOperation,
    ValidationError,
)
from switchyard.files import (
    FileDiscovery,
    FileSelectionPipeline,
    ProviderChooser,
    ReadManyFilesParams,
    ReadManyFilesResult,
    SkipRecord,
)
from switchyard.providers import Provider, get_provider
from switchyard.providers.toolcalls import StreamingToolCallExtractor, extract_tool_calls
from switchyard.retry import RetryPolicy
from switchyard.tokens import estimate_tokens, token_limit

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("switchyard-ai")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("switchyard").addHandler(logging.NullHandler())

__all__ = [
    "BackendError",
    "CancellationToken",
    "Config",
    "ConfigurationError",
    "FileDiscovery",
    "FileSelectionPipeline",
    "FinishReason",
    "FunctionCallPart",
    "FunctionResponsePart",
    "GenerationRequest",
    "GenerationResponse",
    "InlineDataPart",
    "Message",
    "ParseError",
    "Part",
    "Provider",
    "ProviderChooser",
    "RateLimitError",
    "ReadManyFilesParams",
    "ReadManyFilesResult",
    "RetryPolicy",
    "SelectionLimits",
    "SkipRecord",
    "StreamingToolCallExtractor",
    "SwitchyardError",
    "TextPart",
    "ThoughtPart",
    "ToolDeclaration",
    "UnsupportedOperation",
    "Usage",
    "ValidationError",
    "__version__",
    "estimate_tokens",
    "extract_tool_calls",
    "get_provider",
    "token_limit",
]
