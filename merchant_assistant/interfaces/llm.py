"""
LLM capability interface

The routing core only needs chat completion with an optional streaming
callback. The capability may be absent altogether; components receive
`ILLMClient | None` and check `is_available()` before calling it.
"""

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Protocol, TypedDict, runtime_checkable

ChunkCallback = Callable[[str], Awaitable[None] | None]


class LLMMessage(TypedDict):
    """Chat message in {"role": ..., "content": ...} form."""

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass
class LLMResponse:
    """Final text of a chat completion."""

    content: str
    model: str | None = None
    cached: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ILLMClient(Protocol):
    """
    Chat-completion capability.

    Example:
        ```python
        response = await client.chat(
            [
                {"role": "system", "content": "You are a routing assistant"},
                {"role": "user", "content": "海底捞最近怎么样"},
            ],
            use_cache=False,
        )
        print(response.content)
        ```
    """

    @abstractmethod
    async def chat(
        self,
        messages: list[LLMMessage],
        *,
        use_cache: bool = True,
        on_chunk: ChunkCallback | None = None,
    ) -> LLMResponse:
        """
        Run a chat completion.

        Args:
            messages: Ordered chat messages
            use_cache: Allow a cached response for identical messages
            on_chunk: Called with each streamed text fragment, if given

        Raises:
            LLMCallFailedError: Transport or model failure
        """
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the capability can currently be called."""
        ...
