"""
Renderer-agnostic slide data.

One dataclass per slide kind; ``type`` is fixed per class so renderers can
dispatch on it or on isinstance. Display values are pre-formatted strings,
raw numbers are kept only where a chart needs them.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union

SLIDE_TYPES = (
    "title",
    "kpi_overview",
    "campaign_breakdown",
    "trend_analysis",
    "top_performers",
    "audience_insights",
    "budget_allocation",
    "comparison",
    "executive_summary",
)


@dataclass
class LabeledValue:
    label: str
    value: str


@dataclass
class KpiMetric:
    label: str
    value: str
    change: Optional[float] = None          # percent vs previous period
    trend: Optional[str] = None             # up | down | flat


@dataclass
class CampaignRow:
    name: str
    metrics: Dict[str, str]


@dataclass
class TrendPoint:
    date: str
    values: Dict[str, float]
    display: Dict[str, str]


@dataclass
class RankedItem:
    rank: int
    name: str
    primary_metric: LabeledValue
    secondary_metrics: List[LabeledValue] = field(default_factory=list)


@dataclass
class AudienceSegment:
    label: str
    spend: float
    share: float                            # percent of dimension spend
    display: Dict[str, str] = field(default_factory=dict)


@dataclass
class AudienceBreakdown:
    dimension: str
    segments: List[AudienceSegment] = field(default_factory=list)


@dataclass
class Allocation:
    name: str
    spend: float
    percentage: float
    spend_display: str = ""
    percentage_display: str = ""


@dataclass
class ComparisonRow:
    metric: str
    label: str
    current: str
    previous: str
    change: Optional[float] = None
    trend: Optional[str] = None


# ── Variants ─────────────────────────────────────────────────────────────────


@dataclass
class TitleSlide:
    client_name: str
    report_title: str
    date_range: str
    subtitle: Optional[str] = None
    type: str = field(default="title", init=False)


@dataclass
class ExecutiveSummarySlide:
    title: str
    summary: str
    type: str = field(default="executive_summary", init=False)


@dataclass
class KpiOverviewSlide:
    title: str
    metrics: List[KpiMetric]
    commentary: Optional[str] = None
    type: str = field(default="kpi_overview", init=False)


@dataclass
class CampaignBreakdownSlide:
    title: str
    campaigns: List[CampaignRow]
    highlight_metric: str = "spend"
    chart_type: str = "bar_and_table"
    commentary: Optional[str] = None
    type: str = field(default="campaign_breakdown", init=False)


@dataclass
class TrendAnalysisSlide:
    title: str
    points: List[TrendPoint]
    metrics: List[str]
    chart_type: str = "line"
    commentary: Optional[str] = None
    type: str = field(default="trend_analysis", init=False)


@dataclass
class TopPerformersSlide:
    title: str
    items: List[RankedItem]
    commentary: Optional[str] = None
    type: str = field(default="top_performers", init=False)


@dataclass
class AudienceInsightsSlide:
    title: str
    breakdowns: List[AudienceBreakdown]
    chart_type: str = "doughnut"
    commentary: Optional[str] = None
    type: str = field(default="audience_insights", init=False)


@dataclass
class BudgetAllocationSlide:
    title: str
    allocations: List[Allocation]
    chart_type: str = "doughnut"
    commentary: Optional[str] = None
    type: str = field(default="budget_allocation", init=False)


@dataclass
class ComparisonSlide:
    title: str
    current_label: str
    previous_label: str
    rows: List[ComparisonRow]
    commentary: Optional[str] = None
    type: str = field(default="comparison", init=False)


SlideData = Union[
    TitleSlide,
    KpiOverviewSlide,
    CampaignBreakdownSlide,
    TrendAnalysisSlide,
    TopPerformersSlide,
    AudienceInsightsSlide,
    BudgetAllocationSlide,
    ComparisonSlide,
    ExecutiveSummarySlide,
]


def supports_commentary(slide: SlideData) -> bool:
    return not isinstance(slide, (TitleSlide, ExecutiveSummarySlide))


def slide_to_dict(slide: SlideData) -> Dict[str, Any]:
    return asdict(slide)
