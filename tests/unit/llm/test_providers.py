"""Tests for the litellm-backed providers and API key validation."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sourcehive.config import EmbeddingCfg, ProviderCfg
from sourcehive.llm.providers import LiteLlmEmbedder, LiteLlmProvider, validate_api_key

# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
        validate_api_key("openai/gpt-4o")


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    validate_api_key("openai/gpt-4o")


def test_validate_api_key_anthropic(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="ANTHROPIC_API_KEY"):
        validate_api_key("anthropic/claude-3-5-sonnet-20241022")


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/llama3.1:8b")


def test_validate_api_key_bare_model_treated_as_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError):
        validate_api_key("gpt-4o")


# ------------------------------------------------------------------
# LiteLlmProvider
# ------------------------------------------------------------------


def _completion(content="Hello", finish_reason="stop"):
    response = MagicMock()
    response.choices[0].message.content = content
    response.choices[0].finish_reason = finish_reason
    return response


def test_generate_returns_response():
    provider = LiteLlmProvider("cloud", ProviderCfg(model="openai/gpt-4o"))
    with patch(
        "sourcehive.llm.providers.litellm.acompletion",
        new=AsyncMock(return_value=_completion("Hello, world!")),
    ):
        response = asyncio.run(provider.generate("Hi"))
    assert response.text == "Hello, world!"
    assert response.was_truncated is False
    assert response.model == "openai/gpt-4o"
    assert response.provider == "cloud"


def test_generate_passes_params():
    provider = LiteLlmProvider(
        "local",
        ProviderCfg(model="ollama/llama3.1:8b", api_base="http://localhost:11434"),
        timeout_seconds=42,
    )
    mock = AsyncMock(return_value=_completion())
    with patch("sourcehive.llm.providers.litellm.acompletion", new=mock):
        asyncio.run(provider.generate("Q", "Be brief.", max_tokens=100, model="ollama/mini"))
    kwargs = mock.call_args.kwargs
    assert kwargs["model"] == "ollama/mini"
    assert kwargs["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Q"},
    ]
    assert kwargs["max_tokens"] == 100
    assert kwargs["temperature"] == 0.0
    assert kwargs["api_base"] == "http://localhost:11434"
    assert kwargs["timeout"] == 42


def test_generate_flags_truncation_and_none_content():
    provider = LiteLlmProvider("cloud", ProviderCfg(model="openai/gpt-4o"))
    with patch(
        "sourcehive.llm.providers.litellm.acompletion",
        new=AsyncMock(return_value=_completion(None, "length")),
    ):
        response = asyncio.run(provider.generate("Hi"))
    assert response.text == ""
    assert response.was_truncated is True


def test_generate_propagates_errors():
    provider = LiteLlmProvider("cloud", ProviderCfg(model="openai/gpt-4o"))
    with patch(
        "sourcehive.llm.providers.litellm.acompletion",
        new=AsyncMock(side_effect=ConnectionError("refused")),
    ):
        with pytest.raises(ConnectionError):
            asyncio.run(provider.generate("Hi"))


# ------------------------------------------------------------------
# LiteLlmEmbedder
# ------------------------------------------------------------------


def test_embed_returns_vector():
    response = MagicMock()
    response.data = [{"embedding": [0.1, 0.2, 0.3]}]
    mock = AsyncMock(return_value=response)
    embedder = LiteLlmEmbedder(EmbeddingCfg(model="openai/text-embedding-3-small"))
    with patch("sourcehive.llm.providers.litellm.aembedding", new=mock):
        vector = asyncio.run(embedder.embed("solar"))
    assert vector == [0.1, 0.2, 0.3]
    assert mock.call_args.kwargs == {"model": "openai/text-embedding-3-small", "input": ["solar"]}
