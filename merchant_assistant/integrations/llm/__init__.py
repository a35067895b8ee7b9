from merchant_assistant.integrations.llm.calls import call_llm, llm_available
from merchant_assistant.integrations.llm.langchain_client import LangChainLLMClient, create_llm_client

__all__ = ["LangChainLLMClient", "call_llm", "create_llm_client", "llm_available"]
