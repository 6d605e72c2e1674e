from __future__ import annotations

from prism.llm.client import LLMClient
from prism.llm.factory import get_llm_client
from prism.llm.openai_client import OpenAILLMClient

__all__ = [
    "LLMClient",
    "get_llm_client",
    "OpenAILLMClient",
]
