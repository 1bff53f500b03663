"""LiteLLM-backed chat and embedding providers.

All model calls route through this module. One litellm model string
("ollama/llama3.2", "anthropic/claude-3-5-haiku-20241022", "openai/gpt-4o-mini")
selects the provider, so provider-specific request and response shapes never
reach the rest of the core. LiteLLM's built-in transport retry is used
(num_retries=3); the core itself never retries.

Cancellation is cooperative: callers pass a ``threading.Event`` and streaming
stops at the next chunk once it is set. A cancelled stream ends quietly.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterator, Sequence
from typing import Protocol

import litellm

from doconvo.db.models import Message
from doconvo.errors import Cancelled, ProviderError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Capability contracts
# ------------------------------------------------------------------


class ChatProvider(Protocol):
    def chat(
        self, messages: Sequence[Message], cancel: threading.Event | None = None
    ) -> str: ...

    def chat_stream(
        self, messages: Sequence[Message], cancel: threading.Event | None = None
    ) -> Iterator[str]: ...


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        ProviderError: If the required key is missing from the environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise ProviderError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


# ------------------------------------------------------------------
# Raw calls
# ------------------------------------------------------------------


def complete(
    model: str,
    messages: list[dict],
    temperature: float = 0.0,
    max_tokens: int | None = None,
    num_retries: int = 3,
) -> str:
    """Call litellm.completion() and return the content string."""
    kwargs: dict = {}
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    response = litellm.completion(
        model=model,
        messages=messages,
        temperature=temperature,
        num_retries=num_retries,
        **kwargs,
    )
    return response.choices[0].message.content or ""


def embed(model: str, text: str, num_retries: int = 3) -> list[float]:
    """Call litellm.embedding() and return the embedding vector."""
    response = litellm.embedding(
        model=model,
        input=[text],
        num_retries=num_retries,
    )
    return response.data[0]["embedding"]


# ------------------------------------------------------------------
# Providers
# ------------------------------------------------------------------


class LiteLLMChat:
    """Chat provider for any litellm model.

    Args:
        model: LiteLLM model string (provider/model format).
        temperature: Sampling temperature.
        max_tokens: Output limit; provider default when None.
        num_retries: LiteLLM transport retries on transient errors.
    """

    def __init__(
        self,
        model: str,
        temperature: float = 0.8,
        max_tokens: int | None = None,
        num_retries: int = 3,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.num_retries = num_retries

    def chat(self, messages: Sequence[Message], cancel: threading.Event | None = None) -> str:
        """One-shot completion.

        Raises:
            Cancelled: If *cancel* was set before or during the call.
            ProviderError: On any provider failure.
        """
        _check_cancel(cancel)
        try:
            content = complete(
                self.model,
                [m.to_llm() for m in messages],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                num_retries=self.num_retries,
            )
        except Exception as exc:
            raise ProviderError(f"chat with {self.model} failed: {exc}") from exc
        _check_cancel(cancel)
        return content

    def chat_stream(
        self, messages: Sequence[Message], cancel: threading.Event | None = None
    ) -> Iterator[str]:
        """Yield content deltas as the model produces them.

        Stops without error once *cancel* is set.

        Raises:
            ProviderError: On any provider failure, raised from the iterator.
        """
        if cancel is not None and cancel.is_set():
            return
        kwargs: dict = {}
        if self.max_tokens is not None:
            kwargs["max_tokens"] = self.max_tokens
        try:
            stream = litellm.completion(
                model=self.model,
                messages=[m.to_llm() for m in messages],
                temperature=self.temperature,
                num_retries=self.num_retries,
                stream=True,
                **kwargs,
            )
        except Exception as exc:
            raise ProviderError(f"chat with {self.model} failed: {exc}") from exc

        try:
            for part in stream:
                if cancel is not None and cancel.is_set():
                    logger.debug("stream from %s cancelled", self.model)
                    return
                delta = part.choices[0].delta.content if part.choices else None
                if delta:
                    yield delta
        except Exception as exc:
            raise ProviderError(f"streaming from {self.model} failed: {exc}") from exc
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                close()


class LiteLLMEmbedder:
    """Embedding provider for any litellm embedding model."""

    def __init__(self, model: str, num_retries: int = 3) -> None:
        self.model = model
        self.num_retries = num_retries

    def embed(self, text: str) -> list[float]:
        try:
            return embed(self.model, text, num_retries=self.num_retries)
        except Exception as exc:
            raise ProviderError(f"embedding with {self.model} failed: {exc}") from exc


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise Cancelled()
