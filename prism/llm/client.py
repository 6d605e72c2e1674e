from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol


class LLMClient(Protocol):
    """
    Chat-completion client used by the deck analyzer.

    ``complete`` takes role/content messages and returns the assistant text,
    stripped, or "" when the provider produced nothing. Provider errors
    propagate; callers decide whether they are fatal.
    """

    @property
    def model_name(self) -> str:
        ...

    def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        **kwargs: Any,
    ) -> str:
        ...
