from merchant_assistant.interfaces.llm import ChunkCallback, ILLMClient, LLMMessage, LLMResponse
from merchant_assistant.interfaces.registry import Entity, IEntityRegistry, InMemoryEntityRegistry

__all__ = [
    "ChunkCallback",
    "Entity",
    "IEntityRegistry",
    "ILLMClient",
    "InMemoryEntityRegistry",
    "LLMMessage",
    "LLMResponse",
]
