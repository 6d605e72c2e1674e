from __future__ import annotations

from typing import List, Optional

from prism.analysis.base import AnalysisInput, Anomaly
from prism.resources.deck.slides import SlideData


class NoopAnalyzer:
    """Default analyzer: no network calls, no summary slide, no commentary."""

    async def generate_executive_summary(self, analysis_input: AnalysisInput) -> Optional[str]:
        return None

    async def generate_slide_commentary(
        self, slide: SlideData, analysis_input: AnalysisInput
    ) -> Optional[str]:
        return None

    async def detect_anomalies(self, analysis_input: AnalysisInput) -> Optional[List[Anomaly]]:
        return None
