"""
LangChain chat-model adapter

Exposes any LangChain chat model (ChatOllama, ChatOpenAI) through the
ILLMClient interface, with response caching, streaming callbacks and
<think> tag cleaning for reasoning models.
"""

import hashlib
import inspect
import json
import logging
import re
from collections import OrderedDict

import httpx
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from merchant_assistant.core.exceptions import LLMCallFailedError, LLMUnavailableError
from merchant_assistant.interfaces.llm import ChunkCallback, LLMMessage, LLMResponse

logger = logging.getLogger(__name__)

THINK_PATTERN = re.compile(r"<think>.*?</think>", re.DOTALL)


def _to_langchain(messages: list[LLMMessage]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in messages:
        role = message.get("role", "user")
        content = message.get("content", "")
        if role == "system":
            converted.append(SystemMessage(content=content))
        elif role == "assistant":
            converted.append(AIMessage(content=content))
        else:
            converted.append(HumanMessage(content=content))
    return converted


def _cache_key(messages: list[LLMMessage]) -> str:
    payload = json.dumps(messages, ensure_ascii=False, sort_keys=True)
    return hashlib.md5(payload.encode()).hexdigest()


class LangChainLLMClient:
    """
    ILLMClient backed by a LangChain chat model.

    Example:
        ```python
        client = LangChainLLMClient(ChatOllama(model="qwen2.5:7b"), model_name="qwen2.5:7b")
        response = await client.chat([{"role": "user", "content": "你好"}])
        ```
    """

    def __init__(
        self,
        model: BaseChatModel,
        model_name: str | None = None,
        cache_size: int = 200,
        health_url: str | None = None,
    ):
        self.model = model
        self.model_name = model_name
        self.cache_size = cache_size
        self.health_url = health_url
        self._cache: OrderedDict[str, str] = OrderedDict()
        self._available = True
        self._stats = {"calls": 0, "cache_hits": 0, "errors": 0}

    def is_available(self) -> bool:
        return self._available

    def mark_unavailable(self, reason: str = "") -> None:
        if self._available:
            logger.warning(f"LLM marked unavailable: {reason}")
        self._available = False

    def mark_available(self) -> None:
        self._available = True

    async def health_check(self) -> bool:
        """
        Probe the model server and update availability.

        Returns:
            True if the server answered with HTTP 200
        """
        if not self.health_url:
            return self._available
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(self.health_url)
            healthy = response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"LLM health check failed: {e}")
            healthy = False

        if healthy:
            self.mark_available()
        else:
            self.mark_unavailable("health check failed")
        return healthy

    async def chat(
        self,
        messages: list[LLMMessage],
        *,
        use_cache: bool = True,
        on_chunk: ChunkCallback | None = None,
    ) -> LLMResponse:
        if not self._available:
            raise LLMUnavailableError()

        key = _cache_key(messages)
        if use_cache and key in self._cache:
            self._cache.move_to_end(key)
            self._stats["cache_hits"] += 1
            content = self._cache[key]
            if on_chunk is not None:
                await _emit(on_chunk, content)
            return LLMResponse(content=content, model=self.model_name, cached=True)

        self._stats["calls"] += 1
        lc_messages = _to_langchain(messages)
        try:
            if on_chunk is not None:
                parts: list[str] = []
                async for chunk in self.model.astream(lc_messages):
                    text = chunk.content if isinstance(chunk.content, str) else ""
                    if text:
                        parts.append(text)
                        await _emit(on_chunk, text)
                raw = "".join(parts)
            else:
                result = await self.model.ainvoke(lc_messages)
                raw = result.content if isinstance(result.content, str) else str(result.content)
        except httpx.ConnectError as e:
            self._stats["errors"] += 1
            self.mark_unavailable(str(e))
            raise LLMCallFailedError(f"Could not connect to model server: {e}", e) from e
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Error calling chat model: {e}")
            raise LLMCallFailedError(f"Chat model call failed: {e}", e) from e

        content = THINK_PATTERN.sub("", raw).strip()

        if use_cache and self.cache_size > 0 and content:
            self._cache[key] = content
            if len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

        return LLMResponse(content=content, model=self.model_name)

    def get_stats(self) -> dict:
        return {**self._stats, "cache_size": len(self._cache), "available": self._available}

    def clear_cache(self) -> None:
        self._cache.clear()


async def _emit(callback: ChunkCallback, text: str) -> None:
    outcome = callback(text)
    if inspect.isawaitable(outcome):
        await outcome


def create_llm_client(settings) -> LangChainLLMClient | None:
    """
    Build the LLM client selected by LLM_PROVIDER.

    Returns:
        A client, or None when LLM_PROVIDER is "none"
    """
    provider = settings.LLM_PROVIDER
    if provider == "none":
        logger.info("No LLM provider configured; llm and hybrid strategies degrade to skills")
        return None

    base_url = settings.LLM_BASE_URL.rstrip("/")

    if provider == "ollama":
        from langchain_ollama import ChatOllama

        model = ChatOllama(
            model=settings.LLM_MODEL,
            base_url=base_url,
            temperature=settings.LLM_TEMPERATURE,
            client_kwargs={"timeout": settings.LLM_TIMEOUT},
        )
        health_url = f"{base_url}/api/tags"
    elif provider == "openai":
        from langchain_openai import ChatOpenAI

        model = ChatOpenAI(
            model=settings.LLM_MODEL,
            base_url=base_url,
            api_key=settings.LLM_API_KEY,
            temperature=settings.LLM_TEMPERATURE,
            timeout=settings.LLM_TIMEOUT,
            max_retries=0,
        )
        health_url = None
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")

    logger.info(f"LLM client created: provider={provider}, model={settings.LLM_MODEL}, base_url={base_url}")
    return LangChainLLMClient(model, model_name=settings.LLM_MODEL, cache_size=settings.LLM_CACHE_SIZE, health_url=health_url)
