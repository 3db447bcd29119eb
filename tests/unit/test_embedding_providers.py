"""Unit tests for embedding provider adapters (OpenAI-compatible, Nomic/Ollama)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from src.config.settings import Settings
from src.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.utils.errors import RAGError

_OPENAI_CLIENT = "src.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI"
_NOMIC_CLIENT = "src.providers.embedding.nomic_embedding_provider.openai.AsyncOpenAI"
_NOMIC_HTTPX_GET = "src.providers.embedding.nomic_embedding_provider.httpx.get"


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_embedding_model": "text-embedding-3-small",
        "ollama_base_url": "http://localhost:11434",
        "embedding_dimension": 1536,
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _response(*vectors: list[float]) -> MagicMock:
    response = MagicMock()
    response.data = [MagicMock(embedding=v) for v in vectors]
    response.usage = MagicMock(total_tokens=10 * len(vectors))
    return response


def _api_error(message: str = "Rate limit") -> openai.APIError:
    return openai.APIError(message=message, request=MagicMock(), body=None)


# ======================================================================
# OpenAI Embedding Provider
# ======================================================================


class TestOpenAIEmbeddingProvider:
    def test_provider_name_reflects_base_url(self) -> None:
        assert OpenAIEmbeddingProvider(_settings()).get_provider_name() == "openai_embedding"
        compatible = OpenAIEmbeddingProvider(_settings(openai_base_url="https://api.together.xyz/v1"))
        assert compatible.get_provider_name() == "openai-compatible_embedding"

    def test_is_available_depends_on_key(self) -> None:
        assert OpenAIEmbeddingProvider(_settings()).is_available() is True
        assert OpenAIEmbeddingProvider(_settings(openai_api_key="")).is_available() is False

    @pytest.mark.parametrize(
        ("model", "expected"),
        [
            ("text-embedding-3-small", 1536),
            ("text-embedding-3-large", 3072),
            ("text-embedding-ada-002", 1536),
        ],
    )
    def test_known_model_dimensions(self, model: str, expected: int) -> None:
        provider = OpenAIEmbeddingProvider(_settings(openai_embedding_model=model))
        assert provider.get_dimension() == expected

    def test_unknown_model_uses_configured_dimension(self) -> None:
        provider = OpenAIEmbeddingProvider(
            _settings(openai_embedding_model="custom-embedder", embedding_dimension=384)
        )
        assert provider.get_dimension() == 384

    @pytest.mark.asyncio
    async def test_embed_success(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            return_value=_response([0.1] * 1536, [0.2] * 1536)
        )
        with patch(_OPENAI_CLIENT, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            result = await provider.embed(["hello", "world"])

        assert len(result) == 2
        assert result[1][0] == 0.2
        mock_client.embeddings.create.assert_awaited_once_with(
            input=["hello", "world"], model="text-embedding-3-small"
        )

    @pytest.mark.asyncio
    async def test_embed_empty_input_makes_no_call(self) -> None:
        mock_client = AsyncMock()
        with patch(_OPENAI_CLIENT, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            assert await provider.embed([]) == []
        mock_client.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_embed_batches_large_inputs(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            side_effect=lambda input, model: _response(*([[0.0]] * len(input)))
        )
        with patch(_OPENAI_CLIENT, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            result = await provider.embed(["t"] * 2050)

        assert len(result) == 2050
        assert mock_client.embeddings.create.await_count == 2

    @pytest.mark.asyncio
    async def test_embed_single(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(return_value=_response([0.5] * 1536))
        with patch(_OPENAI_CLIENT, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            result = await provider.embed_single("hello")
        assert len(result) == 1536

    @pytest.mark.asyncio
    async def test_embed_single_with_empty_response(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(return_value=_response())
        with patch(_OPENAI_CLIENT, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            with pytest.raises(RAGError, match="no vectors"):
                await provider.embed_single("hello")

    @pytest.mark.asyncio
    async def test_api_error_becomes_rag_error(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(side_effect=_api_error())
        with patch(_OPENAI_CLIENT, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            with pytest.raises(RAGError) as exc_info:
                await provider.embed(["test"])
        assert exc_info.value.provider_name == "openai_embedding"


# ======================================================================
# Nomic Embedding Provider
# ======================================================================


class TestNomicEmbeddingProvider:
    def test_name_and_dimension(self) -> None:
        provider = NomicEmbeddingProvider(_settings())
        assert provider.get_provider_name() == "nomic_embedding"
        assert provider.get_dimension() == 768

    def test_is_available_when_ollama_answers(self) -> None:
        with patch(_NOMIC_HTTPX_GET, return_value=MagicMock(status_code=200)) as mock_get:
            assert NomicEmbeddingProvider(_settings()).is_available() is True
        mock_get.assert_called_once_with("http://localhost:11434/api/tags", timeout=3.0)

    def test_is_unavailable_when_connection_fails(self) -> None:
        with patch(_NOMIC_HTTPX_GET, side_effect=httpx.ConnectError("refused")):
            assert NomicEmbeddingProvider(_settings()).is_available() is False

    def test_is_unavailable_on_error_status(self) -> None:
        with patch(_NOMIC_HTTPX_GET, return_value=MagicMock(status_code=500)):
            assert NomicEmbeddingProvider(_settings()).is_available() is False

    def test_is_unavailable_without_base_url(self) -> None:
        assert NomicEmbeddingProvider(_settings(ollama_base_url="")).is_available() is False

    @pytest.mark.asyncio
    async def test_embed_uses_ollama_openai_endpoint(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(return_value=_response([0.3] * 768))
        with patch(_NOMIC_CLIENT, return_value=mock_client) as mock_cls:
            provider = NomicEmbeddingProvider(_settings(ollama_base_url="http://ollama:11434/"))
            result = await provider.embed_single("hello")

        assert len(result) == 768
        assert mock_cls.call_args.kwargs["base_url"] == "http://ollama:11434/v1"
        mock_client.embeddings.create.assert_awaited_once_with(
            input=["hello"], model="nomic-embed-text"
        )

    @pytest.mark.asyncio
    async def test_api_error_becomes_rag_error(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(side_effect=_api_error("down"))
        with patch(_NOMIC_CLIENT, return_value=mock_client):
            provider = NomicEmbeddingProvider(_settings())
            with pytest.raises(RAGError, match="Nomic/Ollama"):
                await provider.embed(["test"])
