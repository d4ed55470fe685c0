"""HTTP client for OpenAI-compatible chat-completions endpoints."""

from __future__ import annotations

import json
import os
from typing import Any, Callable, Dict, Optional

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["ChatCompletionsClient", "Transport"]


Transport = Callable[[Dict[str, Any]], str]

DEFAULT_BASE_URL = "https://api.openai.com/v1/chat/completions"


class ChatCompletionsClient(LLMClient):
    """Thin adapter around a chat-completions API with a pluggable transport."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = "gpt-4o-mini",
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
    ) -> None:
        super().__init__(model=model)
        self._api_key = api_key or os.getenv("QARUNNER_API_KEY") or os.getenv("OPENAI_API_KEY")
        self._base_url = base_url
        timeout_override = os.getenv("QARUNNER_TIMEOUT")
        if timeout_override:
            try:
                parsed = float(timeout_override)
                if parsed > 0:
                    timeout = parsed
            except ValueError:
                pass
        self._timeout = timeout
        self._transport = transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    @property
    def timeout(self) -> float:
        return self._timeout

    def socket_timeout(self, deadline: Optional[float]) -> float:
        """Socket wait for one call: the client timeout, shortened by the call deadline."""
        if deadline is None or deadline <= 0:
            return self._timeout
        return min(self._timeout, deadline)

    def _raw_invoke(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> str:
        """Send the request over the configured transport."""
        try:
            if self._transport is None:
                raw_response = self._http_transport(payload, timeout)
            else:
                raw_response = self._transport(payload)
        except LLMTransportError:
            raise
        except Exception as error:  # pragma: no cover - transport specific
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        content = self._extract_message_content(raw_response)
        if content is None:
            raise LLMResponseFormatError("Chat response did not contain message content.")
        return content

    def _http_transport(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> str:
        """Default HTTP transport using the standard library."""
        import urllib.error
        import urllib.request

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._base_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
                "User-Agent": "qa-runner/0.1",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self.socket_timeout(timeout)) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("Chat completion request timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            retry_after = error.headers.get("Retry-After") if error.headers else None
            hint = f" (retry after {retry_after}s)" if retry_after else ""
            raise LLMTransportError(f"HTTP {error.code}: {message}{hint}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach chat endpoint: {error.reason}") from error

        if status >= 400:
            raise LLMTransportError(f"Unexpected HTTP status {status}")

        return raw.decode("utf-8")

    @staticmethod
    def _extract_message_content(raw_response: str) -> Optional[str]:
        """Pull the assistant text out of a chat-completions response body."""
        if not raw_response:
            return None

        try:
            data = json.loads(raw_response)
        except json.JSONDecodeError:
            return raw_response

        if not isinstance(data, dict):
            return raw_response

        error_block = data.get("error")
        if isinstance(error_block, dict):
            message = error_block.get("message") or error_block.get("status") or "unknown error"
            raise LLMTransportError(f"Provider error: {message}")

        choices = data.get("choices")
        if isinstance(choices, list):
            for choice in choices:
                if not isinstance(choice, dict):
                    continue
                message = choice.get("message")
                if isinstance(message, dict):
                    content = message.get("content")
                    if isinstance(content, str):
                        return content
                    if isinstance(content, list):
                        texts = [
                            part.get("text", "")
                            for part in content
                            if isinstance(part, dict) and isinstance(part.get("text"), str)
                        ]
                        if texts:
                            return "".join(texts)
                text = choice.get("text")
                if isinstance(text, str):
                    return text
            return None

        # Not a chat-completions envelope; hand the body back untouched.
        return raw_response
