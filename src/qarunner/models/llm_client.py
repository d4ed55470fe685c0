"""Client base class and error hierarchy shared by all language-model integrations."""

from __future__ import annotations

import ast
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

__all__ = [
    "CircuitOpenError",
    "LLMClient",
    "LLMClientError",
    "LLMRateLimitError",
    "LLMRequest",
    "LLMResponse",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTimeoutError",
    "LLMTransportError",
    "parse_json_payload",
    "recover_truncated_array",
]


class LLMClientError(RuntimeError):
    """Base error raised for language-model call failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model returns payload that is not valid JSON."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries."""


class LLMRateLimitError(LLMRetryError):
    """Raised when rate-limit retries are exhausted on every configured model."""


class LLMTimeoutError(LLMClientError):
    """Raised when a call exceeds its wall-clock budget."""


class CircuitOpenError(LLMClientError):
    """Raised when a circuit breaker refuses to let a call through."""


@dataclass(slots=True)
class LLMRequest:
    """Chat request sent to a model."""

    prompt: str
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    # Per-attempt deadline in seconds; transports bound their socket wait by it.
    timeout_seconds: Optional[float] = None

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready chat-completions payload."""
        messages: list[Dict[str, str]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": self.prompt})

        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "messages": messages,
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens:
            payload["max_tokens"] = self.max_tokens
        if self.metadata:
            max_metadata_len = 512
            serialised_metadata: Dict[str, str] = {}
            for key, value in self.metadata.items():
                if isinstance(value, str):
                    formatted = value
                else:
                    formatted = json.dumps(value, separators=(",", ":"), sort_keys=True)
                if len(formatted) > max_metadata_len:
                    formatted = f"{formatted[: max_metadata_len - 3]}..."
                serialised_metadata[key] = formatted
            payload["metadata"] = serialised_metadata
        return payload

    def prompt_chars(self) -> int:
        return len(self.prompt) + len(self.system_prompt or "")


@dataclass(slots=True)
class LLMResponse:
    """Text returned by a model together with call telemetry."""

    content: str
    model: str
    latency_ms: int = 0
    prompt_chars: int = 0


class LLMClient:
    """Blocking text-completion client. Subclasses implement the transport."""

    def __init__(self, model: str) -> None:
        self._model = model

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def complete(self, request: LLMRequest) -> LLMResponse:
        """Send ``request`` and return the raw model text."""
        payload = request.to_payload(self._model)
        started = time.monotonic()
        content = self._raw_invoke(payload, timeout=request.timeout_seconds)
        latency_ms = int((time.monotonic() - started) * 1000)
        return LLMResponse(
            content=content,
            model=str(payload.get("model") or self._model),
            latency_ms=latency_ms,
            prompt_chars=request.prompt_chars(),
        )

    def _raw_invoke(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> str:
        """Perform the transport call within ``timeout`` seconds. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")


def parse_json_payload(raw_response: str) -> Any:
    """Parse JSON embedded in model output, tolerating fences and surrounding prose."""
    text = (raw_response or "").strip()
    if not text:
        raise LLMResponseFormatError("Model returned an empty response.")

    text = _normalise_json_string(text)
    candidates = [text]
    repaired = _repair_json_payload(text)
    if repaired and repaired not in candidates:
        candidates.append(_normalise_json_string(repaired))

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pythonic = _coerce_python_literal(candidate)
            if pythonic is not None:
                return pythonic

    snippet = text[:200]
    raise LLMResponseFormatError(f"Model returned invalid JSON: {snippet}")


def recover_truncated_array(raw_response: str) -> Optional[list[Any]]:
    """Salvage the complete objects of a JSON array cut off mid-stream."""
    text = _strip_code_fence(_normalise_json_string((raw_response or "").strip()))
    start = text.find("[")
    if start == -1:
        return None
    body = text[start:]
    cut = body.rfind("},")
    if cut <= 0:
        last_brace = body.rfind("}")
        trailing = body[last_brace + 1 :].strip() if last_brace > 0 else ""
        if last_brace <= 0 or not trailing or trailing == "]":
            return None
        cut = last_brace
    candidate = _strip_trailing_commas(body[: cut + 1] + "]")
    try:
        recovered = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return recovered if isinstance(recovered, list) else None


def _strip_code_fence(payload: str) -> str:
    """Remove Markdown-style code fences that wrap JSON payloads."""
    if not payload.startswith("```"):
        return payload
    fence_header_match = re.match(r"```(?:json)?", payload[:10], re.IGNORECASE)
    if not fence_header_match:
        return payload
    content_start = payload.find("\n", len(fence_header_match.group(0)))
    if content_start == -1:
        return payload
    fence_end = payload.find("```", content_start)
    if fence_end == -1:
        return payload[content_start + 1 :].strip()
    return payload[content_start + 1 : fence_end].strip()


def _normalise_json_string(payload: str) -> str:
    """Normalise common non-JSON characters emitted by models."""
    if not payload:
        return payload
    translation = {
        0x201C: '"',
        0x201D: '"',
        0x2018: "'",
        0x2019: "'",
        0x00A0: " ",
        0xFEFF: "",
    }
    return payload.translate(str.maketrans(translation))


def _strip_trailing_commas(payload: str) -> str:
    """Remove trailing commas before closing braces/brackets."""
    if not payload:
        return payload
    return re.sub(r",(\s*[}\]])", r"\1", payload)


def _repair_json_payload(raw: str) -> str | None:
    """Return the first balanced JSON object or array found in noisy output."""
    stripped = _strip_code_fence(raw.strip())
    if not stripped:
        return None

    try:
        json.loads(stripped)
    except json.JSONDecodeError:
        pass
    else:
        return stripped

    opening_idx = None
    expected: list[str] = []
    in_string = False
    escaped = False
    for index, char in enumerate(stripped):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"' and expected:
            in_string = True
        elif char in "{[":
            if opening_idx is None:
                opening_idx = index
            expected.append("}" if char == "{" else "]")
        elif expected and char == expected[-1]:
            expected.pop()
            if not expected and opening_idx is not None:
                candidate = stripped[opening_idx : index + 1]
                return _strip_trailing_commas(candidate.strip())
    return None


def _coerce_python_literal(candidate: str) -> Any | None:
    """Fall back to Python literal parsing when JSON decoding fails."""
    try:
        literal = ast.literal_eval(candidate)
    except (SyntaxError, ValueError, TypeError):
        return None
    return _normalise_literal(literal)


def _normalise_literal(value: Any) -> Any:
    """Convert Python literals into JSON-compatible structures recursively."""
    if isinstance(value, dict):
        return {str(key): _normalise_literal(sub) for key, sub in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalise_literal(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
