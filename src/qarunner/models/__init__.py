"""Language-model client integrations."""

from .chat import ChatCompletionsClient
from .circuit import CircuitBreaker, CircuitState
from .llm_client import (
    CircuitOpenError,
    LLMClient,
    LLMClientError,
    LLMRateLimitError,
    LLMRequest,
    LLMResponse,
    LLMResponseFormatError,
    LLMRetryError,
    LLMTimeoutError,
    LLMTransportError,
)
from .resilient import CallKind, CallTimeouts, ResilientCallClient, RetryPolicy, build_call_pool

__all__ = [
    "CallKind",
    "CallTimeouts",
    "ChatCompletionsClient",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "LLMClient",
    "LLMClientError",
    "LLMRateLimitError",
    "LLMRequest",
    "LLMResponse",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTimeoutError",
    "LLMTransportError",
    "ResilientCallClient",
    "RetryPolicy",
    "build_call_pool",
]
