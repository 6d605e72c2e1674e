"""
DeckRenderer contract and a JSON reference renderer.

Concrete document renderers (PPTX, Google Slides) live outside this package;
they only need to satisfy DeckRenderer.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, Union

from prism.resources.deck.design_tokens import DesignTokens
from prism.resources.deck.slides import SlideData, slide_to_dict

logger = logging.getLogger(__name__)


@dataclass
class DeckOutputFile:
    buffer: bytes
    filename: str
    mime_type: str
    kind: str = field(default="file", init=False)


@dataclass
class DeckOutputUrl:
    url: str
    title: str
    kind: str = field(default="url", init=False)


DeckOutput = Union[DeckOutputFile, DeckOutputUrl]


class DeckRenderer(Protocol):

    async def initialize(self, tokens: DesignTokens) -> None:
        ...

    async def add_slide(self, slide: SlideData) -> None:
        ...

    async def finalize(self) -> DeckOutput:
        ...


class JsonDeckRenderer:
    """Serializes the deck (tokens + slides in order) to a JSON document."""

    mime_type = "application/json"

    def __init__(self, filename: str = "deck.json", indent: Optional[int] = 2) -> None:
        self.filename = filename
        self.indent = indent
        self.tokens: Optional[DesignTokens] = None
        self.slides: List[SlideData] = []
        self._finalized = False

    async def initialize(self, tokens: DesignTokens) -> None:
        self.tokens = tokens
        self.slides = []
        self._finalized = False

    async def add_slide(self, slide: SlideData) -> None:
        if self.tokens is None:
            raise RuntimeError("JsonDeckRenderer.initialize() must be called before add_slide()")
        if self._finalized:
            raise RuntimeError("Cannot add slides after finalize()")
        self.slides.append(slide)

    async def finalize(self) -> DeckOutputFile:
        if self.tokens is None:
            raise RuntimeError("JsonDeckRenderer.initialize() must be called before finalize()")
        self._finalized = True
        document = {
            "generated_at": datetime.now().isoformat(),
            "design_tokens": self.tokens.to_dict(),
            "slides": [slide_to_dict(s) for s in self.slides],
        }
        payload = json.dumps(document, indent=self.indent).encode("utf-8")
        logger.info("Rendered %d slide(s) to %s (%d bytes)", len(self.slides), self.filename, len(payload))
        return DeckOutputFile(buffer=payload, filename=self.filename, mime_type=self.mime_type)
