"""
Result-returning wrapper around the LLM capability.

The pipeline never relies on exceptions from the LLM: every call site gets
an Ok(content) or an Err(reason) and decides its own fallback.
"""

import logging

from merchant_assistant.core.exceptions import AssistantError
from merchant_assistant.core.result import Err, Ok, Result
from merchant_assistant.interfaces.llm import ChunkCallback, ILLMClient, LLMMessage

logger = logging.getLogger(__name__)


def llm_available(client: ILLMClient | None) -> bool:
    """True when a capability is configured and reports itself available."""
    if client is None:
        return False
    try:
        return bool(client.is_available())
    except Exception as e:
        logger.warning(f"LLM availability check failed: {e}")
        return False


async def call_llm(
    client: ILLMClient | None,
    messages: list[LLMMessage],
    *,
    use_cache: bool = True,
    on_chunk: ChunkCallback | None = None,
) -> Result[str]:
    """
    Run one chat completion.

    Returns:
        Ok(content) with non-empty text, or Err describing why not
    """
    if not llm_available(client):
        return Err("llm_unavailable")

    try:
        response = await client.chat(messages, use_cache=use_cache, on_chunk=on_chunk)
    except AssistantError as e:
        logger.warning(f"LLM call failed [{e.code}]: {e.message}")
        return Err(e.code.lower(), e)
    except Exception as e:
        logger.error(f"Unexpected LLM error: {e}")
        return Err("llm_call_failed", e)

    content = (response.content or "").strip() if response is not None else ""
    if not content:
        return Err("empty_response")
    return Ok(content)
