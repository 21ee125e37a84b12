"""LLM and embedding providers.

Every text generation and embedding call leaves the process through this
module. The router (sourcehive.llm.router) owns retry, backoff and circuit
breaking; providers make exactly one attempt per call, bounded by a timeout.
API key presence is validated at startup before any job begins.
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from typing import Protocol

import litellm

from sourcehive.config import EmbeddingCfg, ProviderCfg

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


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
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


# ------------------------------------------------------------------
# Interfaces
# ------------------------------------------------------------------


@dataclass
class LlmResponse:
    text: str
    was_truncated: bool
    model: str
    duration_ms: int
    provider: str = ""


class LlmProvider(Protocol):
    """One text-generation endpoint. ``generate`` raises on any failure."""

    name: str

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> LlmResponse: ...


class EmbeddingProvider(Protocol):
    """Returns a fixed-length float vector per text."""

    async def embed(self, text: str) -> list[float]: ...


# ------------------------------------------------------------------
# LiteLLM implementations
# ------------------------------------------------------------------


class LiteLlmProvider:
    """LlmProvider backed by litellm.acompletion()."""

    def __init__(self, name: str, config: ProviderCfg, timeout_seconds: float = 120.0) -> None:
        self.name = name
        self._config = config
        self._timeout = timeout_seconds

    @property
    def config(self) -> ProviderCfg:
        return self._config

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> LlmResponse:
        """One completion call. Raises the litellm error on failure or timeout."""
        model = model or self._config.model
        messages: list[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict = {"model": model, "messages": messages, "temperature": 0.0}
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if self._config.api_base:
            kwargs["api_base"] = self._config.api_base

        started = time.monotonic()
        response = await litellm.acompletion(timeout=self._timeout, **kwargs)
        choice = response.choices[0]
        return LlmResponse(
            text=choice.message.content or "",
            was_truncated=choice.finish_reason == "length",
            model=model,
            duration_ms=int((time.monotonic() - started) * 1000),
            provider=self.name,
        )


class LiteLlmEmbedder:
    """EmbeddingProvider backed by litellm.aembedding()."""

    def __init__(self, config: EmbeddingCfg) -> None:
        self._config = config

    @property
    def model(self) -> str:
        return self._config.model

    async def embed(self, text: str) -> list[float]:
        kwargs: dict = {"model": self._config.model, "input": [text]}
        if self._config.api_base:
            kwargs["api_base"] = self._config.api_base
        response = await asyncio.wait_for(
            litellm.aembedding(**kwargs), self._config.timeout_seconds
        )
        return list(response.data[0]["embedding"])
