"""
Deck Composer

Transforms account summaries into slide data and feeds it to a DeckRenderer.
Pure apart from the renderer and analyzer calls: failures in fetching the
summaries are the caller's problem, never handled here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from prism.analysis.base import AnalysisInput, DeckAnalyzer
from prism.models import (
    PLATFORM_LABELS,
    AccountSummary,
    DateRange,
    EcommerceSummary,
    NormalizedMetrics,
    Summary,
    percent_change,
    safe_ratio,
)
from prism.resources.deck.design_tokens import merge_design_tokens
from prism.resources.deck.formatting import (
    date_range_label,
    format_currency,
    format_metric,
    format_number,
    format_percent,
    format_roas,
    metric_label,
    trend_of,
)
from prism.resources.deck.renderer import DeckOutput, DeckRenderer
from prism.resources.deck.slides import (
    SLIDE_TYPES,
    Allocation,
    AudienceBreakdown,
    AudienceInsightsSlide,
    AudienceSegment,
    BudgetAllocationSlide,
    CampaignBreakdownSlide,
    CampaignRow,
    ComparisonRow,
    ComparisonSlide,
    ExecutiveSummarySlide,
    KpiMetric,
    KpiOverviewSlide,
    LabeledValue,
    RankedItem,
    SlideData,
    TitleSlide,
    TopPerformersSlide,
    TrendAnalysisSlide,
    TrendPoint,
    supports_commentary,
)

logger = logging.getLogger(__name__)

KPI_METRICS = ["spend", "impressions", "clicks", "conversions", "roas", "ctr", "cpc", "cpa"]
TREND_METRICS = ["spend", "conversions"]
COMPARISON_METRICS = ["spend", "conversions", "roas", "cpa"]
TOP_CAMPAIGNS = 10
TOP_PERFORMERS = 5


@dataclass
class SlideSelection:
    type: str
    enabled: bool = True
    order: int = 0
    config: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.type not in SLIDE_TYPES:
            raise ValueError(f"Unknown slide type: {self.type}")


@dataclass
class DeckConfig:
    client_name: str
    report_title: str
    slides: List[SlideSelection]
    output_format: str = "pptx"             # pptx | google_slides | json
    design_tokens: Optional[Mapping[str, Mapping[str, Any]]] = None
    date_range: Optional[DateRange] = None   # title label when no accounts are given
    user_context: Optional[str] = None


def default_slide_selections() -> List[SlideSelection]:
    """Four slides per channel, in presentation order."""
    return [
        SlideSelection(type="kpi_overview", order=1),
        SlideSelection(type="campaign_breakdown", order=2),
        SlideSelection(type="trend_analysis", order=3),
        SlideSelection(type="top_performers", order=4),
        SlideSelection(type="budget_allocation", enabled=False, order=5),
        SlideSelection(type="audience_insights", enabled=False, order=6),
        SlideSelection(type="comparison", enabled=False, order=7),
    ]


# ── Ad account builders ──────────────────────────────────────────────────────


def _kpi(label: str, value: str, current: float, previous: Optional[float]) -> KpiMetric:
    change = percent_change(current, previous) if previous is not None else None
    return KpiMetric(label=label, value=value, change=change, trend=trend_of(change))


def build_kpi_overview(account: AccountSummary, platform: str) -> KpiOverviewSlide:
    prev = account.previous_period_metrics
    return KpiOverviewSlide(
        title=f"{platform} - KPI Overview",
        metrics=[
            _kpi(
                metric_label(key),
                format_metric(key, account.metrics.value(key)),
                account.metrics.value(key),
                prev.value(key) if prev is not None else None,
            )
            for key in KPI_METRICS
        ],
    )


def _by_spend(account: AccountSummary):
    return sorted(account.campaigns, key=lambda c: c.metrics.spend, reverse=True)[:TOP_CAMPAIGNS]


def build_campaign_breakdown(account: AccountSummary, platform: str) -> CampaignBreakdownSlide:
    return CampaignBreakdownSlide(
        title=f"{platform} - Campaign Breakdown",
        campaigns=[
            CampaignRow(
                name=c.name,
                metrics={
                    "spend": format_currency(c.metrics.spend),
                    "impressions": format_number(c.metrics.impressions),
                    "clicks": format_number(c.metrics.clicks),
                    "ctr": format_percent(c.metrics.ctr),
                    "conversions": format_number(c.metrics.conversions),
                    "roas": format_roas(c.metrics.roas),
                },
            )
            for c in _by_spend(account)
        ],
    )


def build_trend_analysis(account: AccountSummary, platform: str) -> Optional[TrendAnalysisSlide]:
    if not account.time_series:
        return None
    return TrendAnalysisSlide(
        title=f"{platform} - Performance Trends",
        points=[
            TrendPoint(
                date=ts.date,
                values={key: ts.metrics.value(key) for key in TREND_METRICS},
                display={key: format_metric(key, ts.metrics.value(key)) for key in TREND_METRICS},
            )
            for ts in account.time_series
        ],
        metrics=list(TREND_METRICS),
    )


def build_top_performers(account: AccountSummary, platform: str) -> TopPerformersSlide:
    ranked = sorted(account.campaigns, key=lambda c: c.metrics.conversions, reverse=True)[:TOP_PERFORMERS]
    return TopPerformersSlide(
        title=f"{platform} - Top Performers",
        items=[
            RankedItem(
                rank=i + 1,
                name=c.name,
                primary_metric=LabeledValue("Conversions", format_number(c.metrics.conversions)),
                secondary_metrics=[
                    LabeledValue("Spend", format_currency(c.metrics.spend)),
                    LabeledValue("CPA", format_currency(c.metrics.cpa)),
                    LabeledValue("ROAS", format_roas(c.metrics.roas)),
                ],
            )
            for i, c in enumerate(ranked)
        ],
    )


def build_audience_insights(account: AccountSummary, platform: str) -> Optional[AudienceInsightsSlide]:
    breakdowns = [b for b in account.breakdowns if b.segments]
    if not breakdowns:
        return None
    out: List[AudienceBreakdown] = []
    for b in breakdowns:
        dimension_spend = sum(s.metrics.spend for s in b.segments)
        out.append(
            AudienceBreakdown(
                dimension=b.dimension,
                segments=[
                    AudienceSegment(
                        label=s.label,
                        spend=s.metrics.spend,
                        share=safe_ratio(s.metrics.spend, dimension_spend, 100.0),
                        display={
                            "spend": format_currency(s.metrics.spend),
                            "conversions": format_number(s.metrics.conversions),
                            "ctr": format_percent(s.metrics.ctr),
                            "roas": format_roas(s.metrics.roas),
                        },
                    )
                    for s in b.segments
                ],
            )
        )
    return AudienceInsightsSlide(title=f"{platform} - Audience Insights", breakdowns=out)


def build_budget_allocation(account: AccountSummary, platform: str) -> BudgetAllocationSlide:
    # Share of all campaigns' spend, so the top 10 can sum to less than 100
    total_spend = sum(c.metrics.spend for c in account.campaigns)
    allocations = []
    for c in _by_spend(account):
        percentage = safe_ratio(c.metrics.spend, total_spend, 100.0)
        allocations.append(
            Allocation(
                name=c.name,
                spend=c.metrics.spend,
                percentage=percentage,
                spend_display=format_currency(c.metrics.spend),
                percentage_display=f"{percentage:.1f}%",
            )
        )
    return BudgetAllocationSlide(title=f"{platform} - Budget Allocation", allocations=allocations)


def build_comparison(account: AccountSummary, platform: str) -> Optional[ComparisonSlide]:
    prev = account.previous_period_metrics
    if prev is None:
        return None
    current_range = account.metrics.date_range
    return ComparisonSlide(
        title=f"{platform} - Period Comparison",
        current_label=date_range_label(current_range),
        previous_label=date_range_label(current_range.previous()),
        rows=[_comparison_row(key, account.metrics, prev) for key in COMPARISON_METRICS],
    )


def _comparison_row(key: str, current: NormalizedMetrics, previous: NormalizedMetrics) -> ComparisonRow:
    change = percent_change(current.value(key), previous.value(key))
    return ComparisonRow(
        metric=key,
        label=metric_label(key),
        current=format_metric(key, current.value(key)),
        previous=format_metric(key, previous.value(key)),
        change=change,
        trend=trend_of(change),
    )


AD_BUILDERS: Dict[str, Callable[[AccountSummary, str], Optional[SlideData]]] = {
    "kpi_overview": build_kpi_overview,
    "campaign_breakdown": build_campaign_breakdown,
    "trend_analysis": build_trend_analysis,
    "top_performers": build_top_performers,
    "audience_insights": build_audience_insights,
    "budget_allocation": build_budget_allocation,
    "comparison": build_comparison,
}


# ── Store builders ───────────────────────────────────────────────────────────


def build_store_kpi_overview(store: EcommerceSummary, platform: str) -> KpiOverviewSlide:
    m = store.metrics
    prev = store.previous_period_metrics
    rows = [
        ("Revenue", format_currency(m.revenue), m.revenue, prev.revenue if prev else None),
        ("Orders", format_number(m.orders), m.orders, prev.orders if prev else None),
        (
            "Avg. Order Value",
            format_currency(m.average_order_value),
            m.average_order_value,
            prev.average_order_value if prev else None,
        ),
        ("New Customers", format_number(m.new_customers), m.new_customers, prev.new_customers if prev else None),
        (
            "Returning Customers",
            format_number(m.returning_customers),
            m.returning_customers,
            prev.returning_customers if prev else None,
        ),
        ("Refunds", format_currency(m.refund_amount), m.refund_amount, prev.refund_amount if prev else None),
    ]
    return KpiOverviewSlide(
        title=f"{platform} - KPI Overview",
        metrics=[_kpi(label, value, current, previous) for label, value, current, previous in rows],
    )


def build_store_top_performers(store: EcommerceSummary, platform: str) -> Optional[TopPerformersSlide]:
    if not store.top_products:
        return None
    total = store.metrics.revenue
    ranked = sorted(store.top_products, key=lambda p: p.revenue, reverse=True)[:TOP_PERFORMERS]
    return TopPerformersSlide(
        title=f"{platform} - Top Products",
        items=[
            RankedItem(
                rank=i + 1,
                name=p.name,
                primary_metric=LabeledValue("Revenue", format_currency(p.revenue)),
                secondary_metrics=[
                    LabeledValue("Units Sold", format_number(p.units_sold)),
                    LabeledValue("Avg. Price", format_currency(safe_ratio(p.revenue, p.units_sold))),
                    LabeledValue("Share of Revenue", format_percent(safe_ratio(p.revenue, total, 100.0))),
                ],
            )
            for i, p in enumerate(ranked)
        ],
    )


STORE_BUILDERS: Dict[str, Callable[[EcommerceSummary, str], Optional[SlideData]]] = {
    "kpi_overview": build_store_kpi_overview,
    "top_performers": build_store_top_performers,
}


def build_slide_data(selection: SlideSelection, summary: Summary) -> Optional[SlideData]:
    """One slide for one account, or None when the kind has nothing to show."""
    platform = PLATFORM_LABELS.get(summary.account.platform, summary.account.platform)
    if isinstance(summary, EcommerceSummary):
        store_builder = STORE_BUILDERS.get(selection.type)
        return store_builder(summary, platform) if store_builder else None
    ad_builder = AD_BUILDERS.get(selection.type)
    return ad_builder(summary, platform) if ad_builder else None


# ── Composition ──────────────────────────────────────────────────────────────


async def compose_deck(
    config: DeckConfig,
    accounts: Sequence[Summary],
    renderer: DeckRenderer,
    analyzer: DeckAnalyzer,
    on_progress: Optional[Callable[[str], None]] = None,
) -> DeckOutput:
    """
    Title first, then the executive summary when the analyzer has one, then
    every enabled selection (by ``order``) for every account in order.
    """

    def progress(message: str) -> None:
        logger.info(message)
        if on_progress is not None:
            on_progress(message)

    progress("Initializing deck renderer...")
    await renderer.initialize(merge_design_tokens(config.design_tokens))

    analysis_input = AnalysisInput(accounts=list(accounts), user_context=config.user_context)

    date_range = accounts[0].metrics.date_range if accounts else config.date_range
    await renderer.add_slide(
        TitleSlide(
            client_name=config.client_name,
            report_title=config.report_title,
            date_range=date_range_label(date_range) if date_range else "",
        )
    )

    progress("Generating analysis...")
    summary = await analyzer.generate_executive_summary(analysis_input)
    if summary:
        await renderer.add_slide(ExecutiveSummarySlide(title="Executive Summary", summary=summary))

    enabled = sorted((s for s in config.slides if s.enabled), key=lambda s: s.order)

    for account in accounts:
        progress(f"Building slides for {account.account.name}...")
        for selection in enabled:
            slide = build_slide_data(selection, account)
            if slide is None:
                continue
            if supports_commentary(slide):
                commentary = await analyzer.generate_slide_commentary(slide, analysis_input)
                if commentary:
                    slide.commentary = commentary
            await renderer.add_slide(slide)

    progress("Finalizing deck...")
    return await renderer.finalize()
