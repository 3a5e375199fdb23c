"""Completion service client.

The transport talks to the completion service through ``CompletionClient``.
The Anthropic implementation maps SDK exceptions onto the tutor error
taxonomy so callers only ever see ``CompletionError`` subclasses.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Protocol

import anthropic

from tutor_stream.core.errors import (
    CompletionConfigurationError,
    CompletionError,
    ContextLengthExceededError,
    TransientCompletionError,
)
from tutor_stream.core.logging import get_logger

logger = get_logger(__name__)

_CONTEXT_LENGTH_MARKERS = (
    "prompt is too long",
    "context length",
    "context_length",
    "maximum context",
    "too many tokens",
)


@dataclass
class CompletionRequest:
    """One call to the completion service."""

    system: str
    messages: list[dict[str, str]] = field(default_factory=list)
    model: str = "claude-3-5-haiku-20241022"
    max_tokens: int = 800
    temperature: float = 0.7


class CompletionClient(Protocol):
    """Anything that can stream or complete a request."""

    def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        ...

    async def complete(self, request: CompletionRequest) -> str:
        ...


def validate_api_key(api_key: str | None) -> str:
    """
    Reject credentials that cannot possibly work before any call is made.

    Raises:
        CompletionConfigurationError: If the key is missing or malformed
    """
    key = (api_key or "").strip()
    if not key:
        raise CompletionConfigurationError("ANTHROPIC_API_KEY not configured")
    if not key.startswith("sk-ant-") or len(key) < 20:
        raise CompletionConfigurationError("ANTHROPIC_API_KEY is malformed")
    return key


def classify_error(exc: Exception) -> CompletionError:
    """Map a completion SDK exception onto the tutor error taxonomy."""
    if isinstance(exc, CompletionError):
        return exc

    message = str(exc)
    lowered = message.lower()

    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return CompletionConfigurationError(message)
    if any(marker in lowered for marker in _CONTEXT_LENGTH_MARKERS):
        return ContextLengthExceededError(message)
    if isinstance(
        exc,
        (
            anthropic.RateLimitError,
            anthropic.APIConnectionError,
            anthropic.InternalServerError,
        ),
    ):
        return TransientCompletionError(message)
    if isinstance(exc, anthropic.APIStatusError) and exc.status_code in (429, 500, 502, 503, 529):
        return TransientCompletionError(message)
    if "overloaded" in lowered or "rate limit" in lowered:
        return TransientCompletionError(message)

    return CompletionError(message)


class AnthropicCompletionClient:
    """CompletionClient backed by ``anthropic.AsyncAnthropic``."""

    def __init__(self, api_key: str, timeout: float | None = None):
        self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        try:
            async with self._client.messages.stream(
                model=request.model,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                system=request.system,
                messages=request.messages,
            ) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
        except anthropic.APIError as e:
            raise classify_error(e) from e

    async def complete(self, request: CompletionRequest) -> str:
        try:
            response = await self._client.messages.create(
                model=request.model,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                system=request.system,
                messages=request.messages,
            )
        except anthropic.APIError as e:
            raise classify_error(e) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        logger.debug(
            f"Completion: model={request.model}, "
            f"input={response.usage.input_tokens}, output={response.usage.output_tokens}"
        )
        return text


def build_completion_client(settings) -> CompletionClient:
    """
    Create the default completion client from settings.

    Raises:
        CompletionConfigurationError: If the API key is missing or malformed
    """
    api_key = validate_api_key(settings.ANTHROPIC_API_KEY)
    return AnthropicCompletionClient(api_key, timeout=settings.COMPLETION_REQUEST_TIMEOUT_SECONDS)
