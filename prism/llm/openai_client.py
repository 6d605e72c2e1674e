from __future__ import annotations

from typing import Any, Dict, List, Optional

import openai

from prism.llm.client import LLMClient


class OpenAILLMClient(LLMClient):
    """
    LLMClient implementation backed by OpenAI's Chat Completions API.
    """

    def __init__(self, *, api_key: str, model: str, timeout: float = 60.0) -> None:
        self._client = openai.OpenAI(api_key=api_key, timeout=timeout)
        self._model = model

    @property
    def model_name(self) -> str:
        return self._model

    def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        **kwargs: Any,
    ) -> str:
        params: Dict[str, Any] = {"model": self._model, "messages": messages}
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
        if temperature is not None:
            params["temperature"] = temperature
        params.update(kwargs)
        completion = self._client.chat.completions.create(**params)
        if not completion.choices:
            return ""
        return (completion.choices[0].message.content or "").strip()
