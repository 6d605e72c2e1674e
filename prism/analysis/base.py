"""
Pluggable analysis for decks: executive summary, per-slide commentary and
anomaly detection. Every method may return None, meaning "nothing to add".
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from prism.models import Summary
from prism.resources.deck.slides import SlideData

SEVERITIES = ("info", "warning", "critical")


@dataclass
class AnalysisInput:
    accounts: List[Summary] = field(default_factory=list)
    user_context: Optional[str] = None      # free text from the client questionnaire


@dataclass
class Anomaly:
    severity: str                           # info | warning | critical
    title: str
    description: str
    metric: Optional[str] = None
    campaign_name: Optional[str] = None


class DeckAnalyzer(Protocol):

    async def generate_executive_summary(self, analysis_input: AnalysisInput) -> Optional[str]:
        ...

    async def generate_slide_commentary(
        self, slide: SlideData, analysis_input: AnalysisInput
    ) -> Optional[str]:
        ...

    async def detect_anomalies(self, analysis_input: AnalysisInput) -> Optional[List[Anomaly]]:
        ...
