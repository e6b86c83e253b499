"""LiteLLM-backed embedding and text-generation providers.

All embedding and chat-completion calls route through this module.
LiteLLM's built-in retry is used (``num_retries``, exponential backoff) and
every call accepts a ``timeout`` so one slow batch or query cannot stall a run.
API key presence is validated before any network call is made.

The pipeline depends only on the two protocols below; tests substitute
deterministic stubs for them.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import litellm

from insightrag.errors import ConfigError, EmbeddingError, GenerationError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

log = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "openai/text-embedding-ada-002"
DEFAULT_GENERATION_MODEL = "openai/gpt-4"

ANALYST_PREAMBLE = """\
You are an expert customer insights analyst. Analyze customer profiles and provide:
1. Key behavioral patterns and trends
2. Risk factors or concerns
3. Specific, actionable recommendations
4. Opportunities for improving customer satisfaction

Base your analysis on both the specific query and the provided similar customer profiles.
Be concise but insightful in your analysis."""


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
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    """Return the provider prefix of a LiteLLM model string (default: openai)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def api_key_env(model: str) -> str | None:
    """Return the env var holding the API key for *model*, or None for local providers."""
    provider = provider_of(model)
    return _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        ConfigError: If the required key is missing from the environment.
    """
    provider = provider_of(model)
    env_var = api_key_env(model)

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise ConfigError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


# ------------------------------------------------------------------
# Protocols
# ------------------------------------------------------------------


@runtime_checkable
class EmbeddingProvider(Protocol):
    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per text, same length and order as *texts*."""
        ...


@runtime_checkable
class TextGenerator(Protocol):
    def generate(self, prompt: str) -> str:
        ...


# ------------------------------------------------------------------
# LiteLLM implementations
# ------------------------------------------------------------------


class LiteLLMEmbeddingProvider:
    """Embed a batch of texts with a single ``litellm.embedding()`` call.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        num_retries: Retries on transient errors (rate limits, 5xx).
        timeout: Per-call timeout in seconds (None = LiteLLM default).
    """

    def __init__(
        self,
        model: str = DEFAULT_EMBEDDING_MODEL,
        num_retries: int = 3,
        timeout: float | None = None,
    ) -> None:
        self.model = model
        self.num_retries = num_retries
        self.timeout = timeout

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        kwargs: dict = {"model": self.model, "input": list(texts), "num_retries": self.num_retries}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        log.debug("litellm.embedding model=%s inputs=%d", self.model, len(texts))
        response = litellm.embedding(**kwargs)

        data = response.data
        if len(data) != len(texts):
            raise EmbeddingError(
                f"Embedding provider returned {len(data)} vectors for {len(texts)} inputs"
            )
        # Providers may return items out of order; "index" restores input order.
        items = sorted(
            enumerate(data),
            key=lambda pair: _item_get(pair[1], "index", pair[0]),
        )
        return [list(_item_get(item, "embedding")) for _, item in items]


class LiteLLMTextGenerator:
    """Generate a completion for a prompt with ``litellm.completion()``.

    Args:
        model: LiteLLM chat model string.
        preamble: System message sent ahead of every prompt.
        max_tokens: Maximum output tokens.
        temperature: Sampling temperature.
        num_retries: Retries on transient errors.
        timeout: Per-call timeout in seconds (None = LiteLLM default).
    """

    def __init__(
        self,
        model: str = DEFAULT_GENERATION_MODEL,
        preamble: str = ANALYST_PREAMBLE,
        max_tokens: int = 1024,
        temperature: float = 0.0,
        num_retries: int = 3,
        timeout: float | None = None,
    ) -> None:
        self.model = model
        self.preamble = preamble
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.num_retries = num_retries
        self.timeout = timeout

    def generate(self, prompt: str) -> str:
        messages = []
        if self.preamble:
            messages.append({"role": "system", "content": self.preamble})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "num_retries": self.num_retries,
        }
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        try:
            response = litellm.completion(**kwargs)
        except Exception as exc:
            raise GenerationError(f"{self.model}: {exc}") from exc
        return response.choices[0].message.content or ""


def _item_get(item, key: str, default=None):
    """Read *key* from a LiteLLM response item (dict or object)."""
    if isinstance(item, dict):
        return item.get(key, default)
    return getattr(item, key, default)
