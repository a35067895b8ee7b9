"""
Unit tests for the LangChain chat-model adapter.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from langchain_core.messages import AIMessage, AIMessageChunk

from merchant_assistant.config.settings import Settings
from merchant_assistant.core.exceptions import LLMCallFailedError, LLMUnavailableError
from merchant_assistant.integrations.llm.langchain_client import LangChainLLMClient, create_llm_client

MESSAGES = [{"role": "system", "content": "你是助手"}, {"role": "user", "content": "你好"}]


@pytest.fixture
def model():
    model = MagicMock()
    model.ainvoke = AsyncMock(return_value=AIMessage(content="<think>先想想</think>你好，有什么可以帮您？"))
    return model


class TestChat:
    """Tests for LangChainLLMClient.chat"""

    @pytest.mark.asyncio
    async def test_strips_think_tags(self, model):
        client = LangChainLLMClient(model, model_name="qwen2.5:7b")

        response = await client.chat(MESSAGES)

        assert response.content == "你好，有什么可以帮您？"
        assert response.model == "qwen2.5:7b"
        assert response.cached is False

    @pytest.mark.asyncio
    async def test_converts_roles(self, model):
        client = LangChainLLMClient(model)
        await client.chat(MESSAGES)

        sent = model.ainvoke.await_args.args[0]
        assert [m.type for m in sent] == ["system", "human"]

    @pytest.mark.asyncio
    async def test_identical_messages_served_from_cache(self, model):
        client = LangChainLLMClient(model)

        await client.chat(MESSAGES)
        second = await client.chat(MESSAGES)

        assert second.cached is True
        assert model.ainvoke.await_count == 1
        assert client.get_stats()["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_cache_bypass(self, model):
        client = LangChainLLMClient(model)

        await client.chat(MESSAGES, use_cache=False)
        await client.chat(MESSAGES, use_cache=False)

        assert model.ainvoke.await_count == 2

    @pytest.mark.asyncio
    async def test_streaming(self):
        async def fake_stream(messages):
            for part in ["海底捞", "经营", "良好"]:
                yield AIMessageChunk(content=part)

        model = MagicMock()
        model.astream = fake_stream
        client = LangChainLLMClient(model)
        chunks: list[str] = []

        response = await client.chat(MESSAGES, on_chunk=chunks.append)

        assert chunks == ["海底捞", "经营", "良好"]
        assert response.content == "海底捞经营良好"

    @pytest.mark.asyncio
    async def test_connection_error_marks_unavailable(self, model):
        model.ainvoke.side_effect = httpx.ConnectError("connection refused")
        client = LangChainLLMClient(model)

        with pytest.raises(LLMCallFailedError):
            await client.chat(MESSAGES)

        assert client.is_available() is False
        with pytest.raises(LLMUnavailableError):
            await client.chat(MESSAGES)

    @pytest.mark.asyncio
    async def test_model_error_keeps_availability(self, model):
        model.ainvoke.side_effect = RuntimeError("bad request")
        client = LangChainLLMClient(model)

        with pytest.raises(LLMCallFailedError):
            await client.chat(MESSAGES)

        assert client.is_available() is True
        assert client.get_stats()["errors"] == 1


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_without_url_reports_current_state(self, model):
        assert await LangChainLLMClient(model).health_check() is True

    @pytest.mark.asyncio
    async def test_healthy_server_restores_availability(self, model):
        client = LangChainLLMClient(model, health_url="http://localhost:11434/api/tags")
        client.mark_unavailable("test")

        with patch("merchant_assistant.integrations.llm.langchain_client.httpx.AsyncClient") as client_cls:
            http = client_cls.return_value.__aenter__.return_value
            http.get = AsyncMock(return_value=MagicMock(status_code=200))

            assert await client.health_check() is True

        assert client.is_available() is True

    @pytest.mark.asyncio
    async def test_unreachable_server(self, model):
        client = LangChainLLMClient(model, health_url="http://localhost:11434/api/tags")

        with patch("merchant_assistant.integrations.llm.langchain_client.httpx.AsyncClient") as client_cls:
            http = client_cls.return_value.__aenter__.return_value
            http.get = AsyncMock(side_effect=httpx.ConnectError("refused"))

            assert await client.health_check() is False

        assert client.is_available() is False


class TestCreateLLMClient:
    def test_provider_none(self):
        assert create_llm_client(Settings(_env_file=None, LLM_PROVIDER="none")) is None

    def test_ollama(self):
        settings = Settings(_env_file=None, LLM_PROVIDER="ollama", LLM_BASE_URL="http://ollama:11434/")

        client = create_llm_client(settings)

        assert isinstance(client, LangChainLLMClient)
        assert client.health_url == "http://ollama:11434/api/tags"
        assert client.model_name == settings.LLM_MODEL
