"""
Built-in model provider for the Together AI chat completions API.

The provider sends the system and user prompts as chat messages over
HTTPS with bearer-token authentication. Temperature, ``max_tokens`` and
stop sequences are sent as request parameters. HTTP and transport
failures are mapped onto the provider error taxonomy so the
orchestrator can decide what to retry.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from commit_sage.config.defaults import DEFAULT_API_URL, DEFAULT_MODEL, DEFAULT_REQUEST_TIMEOUT
from commit_sage.errors import (
    AuthenticationFailure,
    MalformedResponse,
    ProviderError,
    RateLimited,
    TransportFailure,
)
from commit_sage.llm.provider import GenerationConfig, ModelContext, ModelProvider


logger = logging.getLogger(__name__)
# Attach a null handler to avoid errors when the root logger is missing a
# stream. Messages will still propagate to the root logger if configured.
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


AVAILABLE_MODELS = (
    ("mistralai/Mixtral-8x7B-Instruct-v0.1", "Best overall performance, recommended default"),
    ("meta-llama/Llama-2-70b-chat-hf", "Excellent for detailed analysis"),
    ("mistralai/Mistral-7B-Instruct-v0.2", "Fast and efficient"),
    ("NousResearch/Nous-Hermes-2-Mixtral-8x7B-DPO", "Optimized for coding tasks"),
    ("openchat/openchat-3.5-0106", "Good balance of performance and speed"),
)

# Status codes that mean "try again later" rather than "request is wrong".
_RATE_LIMIT_STATUSES = {429, 503}
_AUTH_STATUSES = {401, 403}


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _error_detail(response: Any) -> str:
    """Best-effort extraction of the error message from an API reply."""
    try:
        data = response.json()
    except ValueError:
        return (response.text or "").strip()[:200]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
    return (response.text or "").strip()[:200]


@dataclass(frozen=True)
class TogetherAIProvider(ModelProvider):
    """Provider for models hosted on Together AI.

    Parameters
    ----------
    api_key : str
        Bearer token for the API. Never logged.
    model : str
        Model identifier, e.g. ``"mistralai/Mixtral-8x7B-Instruct-v0.1"``.
    request_timeout : float, optional
        Timeout in seconds for the HTTP request. Defaults to 60 seconds.
    api_url : str, optional
        Chat completions endpoint.
    """

    api_key: str = field(repr=False)
    model: str = DEFAULT_MODEL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    api_url: str = DEFAULT_API_URL

    def __post_init__(self) -> None:
        if not self.api_key or not self.api_key.strip():
            raise AuthenticationFailure("API key is empty")

    def model_id(self) -> str:
        return self.model

    def default_config(self) -> GenerationConfig:
        return GenerationConfig(temperature=0.3, max_tokens=100, stop_sequences=("\n",))

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, context: ModelContext) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": context.messages(),
            "temperature": context.config.temperature,
            "max_tokens": context.config.max_tokens,
        }
        if context.config.stop_sequences:
            payload["stop"] = list(context.config.stop_sequences)
        return payload

    def generate(self, context: ModelContext) -> str:
        """Generate a completion for ``context``.

        Returns
        -------
        str
            The assistant message content with surrounding whitespace
            removed. Not yet validated.

        Raises
        ------
        AuthenticationFailure
            On 401/403 responses.
        RateLimited
            On 429/503 responses, with ``retry_after`` when the server
            sent a ``Retry-After`` header.
        TransportFailure
            On connection errors, timeouts, and other 5xx responses.
        MalformedResponse
            When the body is not JSON or carries no text content.
        ProviderError
            On any other non-200 response.
        """
        payload = self._payload(context)
        logger.debug(
            "Sending request to %s (model=%s, temperature=%s, max_tokens=%s, stop=%r)",
            self.api_url,
            self.model,
            context.config.temperature,
            context.config.max_tokens,
            context.config.stop_sequences,
        )
        try:
            response = requests.post(
                self.api_url,
                json=payload,
                headers=self._headers(),
                timeout=self.request_timeout,
            )
        except requests.Timeout as exc:
            logger.error("Request to the model API timed out after %ss", self.request_timeout)
            raise TransportFailure(f"Request timed out after {self.request_timeout}s") from exc
        except requests.RequestException as exc:
            logger.error("Failed to connect to the model API: %s", exc)
            raise TransportFailure(f"Network error: {exc}") from exc

        status = response.status_code
        if status != 200:
            detail = _error_detail(response)
            logger.error("Model API returned status %s: %s", status, detail)
            if status in _AUTH_STATUSES:
                raise AuthenticationFailure(f"Invalid or expired API key (status {status}): {detail}")
            if status in _RATE_LIMIT_STATUSES:
                headers = getattr(response, "headers", None) or {}
                raise RateLimited(
                    f"Rate limited or service unavailable (status {status}): {detail}",
                    retry_after=_parse_retry_after(headers.get("Retry-After")),
                )
            if status >= 500:
                raise TransportFailure(f"Model API server error (status {status}): {detail}")
            raise ProviderError(f"Model API rejected the request (status {status}): {detail}")

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            logger.error("Failed to parse model API response: %s", exc)
            raise MalformedResponse("Model API returned a non-JSON body") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            logger.error("Unexpected response structure from model API: %s", data)
            raise MalformedResponse("Unexpected response structure from model API") from exc
        if not isinstance(content, str):
            raise MalformedResponse("Model API returned non-text content")
        return content.strip()
