from __future__ import annotations

import os
from typing import Optional, Tuple

from prism.llm.client import LLMClient
from prism.llm.openai_client import OpenAILLMClient

DEFAULT_MODEL = "gpt-4o"

FEATURE_MODEL_ENV = {
    "deck_analysis": "PRISM_DECK_ANALYSIS_MODEL",
    "anomaly_detection": "PRISM_ANOMALY_MODEL",
}


def resolve_model(feature: str, explicit_model: Optional[str] = None) -> str:
    """
    Resolution order:
      1. explicit_model
      2. per-feature env override
      3. LLM_MODEL
      4. "gpt-4o"
    """
    feature_env = FEATURE_MODEL_ENV.get(feature)
    return (
        explicit_model
        or (os.environ.get(feature_env) if feature_env else None)
        or os.environ.get("LLM_MODEL")
        or DEFAULT_MODEL
    ).strip()


def get_llm_client(
    *,
    feature: str,
    explicit_model: Optional[str] = None,
    openai_api_key: Optional[str] = None,
) -> Tuple[LLMClient, str]:
    """
    Return an LLM client and the resolved model name for a given feature.

    openai_api_key overrides OPENAI_API_KEY (per-tenant keys).
    """
    model = resolve_model(feature, explicit_model)
    api_key = openai_api_key or os.environ.get("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY not set for OpenAI provider")
    client: LLMClient = OpenAILLMClient(api_key=api_key, model=model)
    return client, model
