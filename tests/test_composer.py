"""Deck composition from account summaries."""

from __future__ import annotations

import json
from typing import List, Optional

import pytest

from prism.analysis.base import AnalysisInput, Anomaly
from prism.analysis.noop import NoopAnalyzer
from prism.models import (
    AccountSummary,
    BreakdownSegment,
    EcommerceSummary,
    NormalizedBreakdown,
    NormalizedEcommerceMetrics,
    NormalizedMetrics,
    NormalizedProduct,
    NormalizedTimeSeries,
)
from prism.resources.deck.composer import (
    DeckConfig,
    SlideSelection,
    build_slide_data,
    compose_deck,
    default_slide_selections,
)
from prism.resources.deck.renderer import JsonDeckRenderer
from prism.resources.deck.slides import (
    BudgetAllocationSlide,
    ExecutiveSummarySlide,
    KpiOverviewSlide,
    TitleSlide,
    TopPerformersSlide,
)

from conftest import make_account, make_campaign, make_summary


class ScriptedAnalyzer:
    def __init__(self, summary: Optional[str] = "Spend was efficient.", commentary: Optional[str] = "Note this."):
        self.summary = summary
        self.commentary = commentary
        self.commented: List[str] = []

    async def generate_executive_summary(self, analysis_input: AnalysisInput) -> Optional[str]:
        return self.summary

    async def generate_slide_commentary(self, slide, analysis_input: AnalysisInput) -> Optional[str]:
        self.commented.append(slide.type)
        return self.commentary

    async def detect_anomalies(self, analysis_input: AnalysisInput) -> Optional[List[Anomaly]]:
        return None


def _config(slides=None, **kwargs) -> DeckConfig:
    return DeckConfig(
        client_name="Acme",
        report_title="May Report",
        slides=slides if slides is not None else default_slide_selections(),
        **kwargs,
    )


@pytest.mark.anyio
async def test_zero_accounts_yield_only_the_title_slide(may_2024):
    renderer = JsonDeckRenderer()
    output = await compose_deck(_config(date_range=may_2024), [], renderer, NoopAnalyzer())

    assert len(renderer.slides) == 1
    assert isinstance(renderer.slides[0], TitleSlide)
    assert renderer.slides[0].date_range == "May 01, 2024 - May 31, 2024"

    document = json.loads(output.buffer)
    assert [s["type"] for s in document["slides"]] == ["title"]
    assert output.mime_type == "application/json"


@pytest.mark.anyio
async def test_title_without_any_date_is_blank():
    renderer = JsonDeckRenderer()
    await compose_deck(_config(), [], renderer, NoopAnalyzer())
    assert renderer.slides[0].date_range == ""


def test_budget_allocation_percentages(may_2024):
    summary = make_summary(
        may_2024,
        [make_campaign("Small", may_2024, spend=20.0), make_campaign("Big", may_2024, spend=80.0)],
    )
    slide = build_slide_data(SlideSelection(type="budget_allocation"), summary)
    assert isinstance(slide, BudgetAllocationSlide)
    assert [a.name for a in slide.allocations] == ["Big", "Small"]
    assert [a.percentage for a in slide.allocations] == [80.0, 20.0]
    assert slide.allocations[0].spend_display == "$80.00"
    assert slide.allocations[0].percentage_display == "80.0%"


def test_budget_allocation_divides_by_all_campaigns(may_2024):
    campaigns = [make_campaign(f"C{i}", may_2024, spend=10.0) for i in range(12)]
    slide = build_slide_data(SlideSelection(type="budget_allocation"), make_summary(may_2024, campaigns))
    assert len(slide.allocations) == 10
    assert sum(a.percentage for a in slide.allocations) == pytest.approx(10 / 12 * 100)


def test_kpi_overview_formats_and_trends(may_2024):
    previous = NormalizedMetrics.from_totals(may_2024.previous(), spend=1000.0, conversions=10.0)
    summary = make_summary(
        may_2024,
        [make_campaign("A", may_2024, spend=1234.5, conversions=10, revenue=2469.0, impressions=12345, clicks=247)],
        previous=previous,
    )
    slide = build_slide_data(SlideSelection(type="kpi_overview"), summary)
    assert isinstance(slide, KpiOverviewSlide)
    assert slide.title == "Meta Ads - KPI Overview"
    by_label = {m.label: m for m in slide.metrics}
    assert [m.label for m in slide.metrics] == ["Spend", "Impressions", "Clicks", "Conversions", "ROAS", "CTR", "CPC", "CPA"]
    assert by_label["Spend"].value == "$1,234.50"
    assert by_label["Spend"].trend == "up"
    assert by_label["Spend"].change == pytest.approx(23.45)
    assert by_label["Conversions"].trend == "flat"
    assert by_label["Impressions"].value == "12,345"
    assert by_label["ROAS"].value == "2.00x"
    assert by_label["CTR"].value == "2.00%"


def test_campaign_breakdown_top_ten_by_spend(may_2024):
    campaigns = [make_campaign(f"C{i:02d}", may_2024, spend=float(i)) for i in range(15)]
    slide = build_slide_data(SlideSelection(type="campaign_breakdown"), make_summary(may_2024, campaigns))
    assert len(slide.campaigns) == 10
    assert slide.campaigns[0].name == "C14"
    assert set(slide.campaigns[0].metrics) == {"spend", "impressions", "clicks", "ctr", "conversions", "roas"}


def test_top_performers_rank_by_conversions(may_2024):
    campaigns = [make_campaign(f"C{i}", may_2024, spend=10.0, conversions=float(i)) for i in range(7)]
    slide = build_slide_data(SlideSelection(type="top_performers"), make_summary(may_2024, campaigns))
    assert isinstance(slide, TopPerformersSlide)
    assert [item.name for item in slide.items] == ["C6", "C5", "C4", "C3", "C2"]
    assert [item.rank for item in slide.items] == [1, 2, 3, 4, 5]
    assert slide.items[0].primary_metric.label == "Conversions"
    assert [m.label for m in slide.items[0].secondary_metrics] == ["Spend", "CPA", "ROAS"]


def test_optional_slides_return_none_without_data(may_2024):
    summary = make_summary(may_2024, [make_campaign("A", may_2024, spend=1.0)])
    assert build_slide_data(SlideSelection(type="trend_analysis"), summary) is None
    assert build_slide_data(SlideSelection(type="audience_insights"), summary) is None
    assert build_slide_data(SlideSelection(type="comparison"), summary) is None


def test_trend_and_audience_slides(may_2024):
    summary = make_summary(may_2024, [make_campaign("A", may_2024, spend=100.0)])
    summary.time_series = [
        NormalizedTimeSeries("2024-05-01", NormalizedMetrics.from_totals(may_2024, spend=40.0, conversions=2)),
        NormalizedTimeSeries("2024-05-03", NormalizedMetrics.from_totals(may_2024, spend=60.0)),
    ]
    summary.breakdowns = [
        NormalizedBreakdown("device", [
            BreakdownSegment("mobile", NormalizedMetrics.from_totals(may_2024, spend=75.0)),
            BreakdownSegment("desktop", NormalizedMetrics.from_totals(may_2024, spend=25.0)),
        ]),
        NormalizedBreakdown("age", []),
    ]
    trend = build_slide_data(SlideSelection(type="trend_analysis"), summary)
    assert [p.date for p in trend.points] == ["2024-05-01", "2024-05-03"]
    assert trend.points[0].display["spend"] == "$40.00"

    audience = build_slide_data(SlideSelection(type="audience_insights"), summary)
    assert [b.dimension for b in audience.breakdowns] == ["device"]
    assert [s.share for s in audience.breakdowns[0].segments] == [75.0, 25.0]


def test_comparison_labels_previous_window(may_2024):
    previous = NormalizedMetrics.from_totals(may_2024.previous(), spend=50.0, conversions=5.0)
    summary = make_summary(may_2024, [make_campaign("A", may_2024, spend=100.0, conversions=5.0)], previous=previous)
    slide = build_slide_data(SlideSelection(type="comparison"), summary)
    assert slide.current_label == "May 01, 2024 - May 31, 2024"
    assert slide.previous_label == "Mar 31, 2024 - Apr 30, 2024"
    assert [r.metric for r in slide.rows] == ["spend", "conversions", "roas", "cpa"]
    assert slide.rows[0].change == pytest.approx(100.0)
    assert slide.rows[1].trend == "flat"


def test_store_summaries_get_kpis_and_top_products(may_2024):
    metrics = NormalizedEcommerceMetrics.empty(may_2024)
    metrics.revenue, metrics.orders, metrics.average_order_value = 500.0, 5, 100.0
    store = EcommerceSummary(
        account=make_account("shopify", name="Acme Store"),
        metrics=metrics,
        top_products=[
            NormalizedProduct(id="1", name="Mug", revenue=100.0, units_sold=5),
            NormalizedProduct(id="2", name="Poster", revenue=400.0, units_sold=4),
        ],
    )
    kpis = build_slide_data(SlideSelection(type="kpi_overview"), store)
    assert kpis.title == "Shopify - KPI Overview"
    assert [m.label for m in kpis.metrics][:3] == ["Revenue", "Orders", "Avg. Order Value"]
    assert kpis.metrics[0].value == "$500.00"

    top = build_slide_data(SlideSelection(type="top_performers"), store)
    assert [i.name for i in top.items] == ["Poster", "Mug"]
    assert top.items[0].secondary_metrics[2].value == "80.00%"

    assert build_slide_data(SlideSelection(type="campaign_breakdown"), store) is None


@pytest.mark.anyio
async def test_full_deck_order_and_commentary(may_2024):
    meta = make_summary(may_2024, [make_campaign("A", may_2024, spend=10.0)], name="Meta One")
    google = make_summary(may_2024, [make_campaign("B", may_2024, spend=5.0, platform="google")],
                          platform="google", name="Google One")
    slides = [
        SlideSelection(type="top_performers", order=2),
        SlideSelection(type="kpi_overview", order=1),
        SlideSelection(type="trend_analysis", order=3),
        SlideSelection(type="budget_allocation", order=4, enabled=False),
    ]
    analyzer = ScriptedAnalyzer()
    renderer = JsonDeckRenderer()
    progress: List[str] = []

    await compose_deck(_config(slides), [meta, google], renderer, analyzer, on_progress=progress.append)

    assert [type(s).__name__ for s in renderer.slides] == [
        "TitleSlide",
        "ExecutiveSummarySlide",
        "KpiOverviewSlide",
        "TopPerformersSlide",
        "KpiOverviewSlide",
        "TopPerformersSlide",
    ]
    assert isinstance(renderer.slides[1], ExecutiveSummarySlide)
    assert renderer.slides[2].commentary == "Note this."
    assert renderer.slides[4].title == "Google Ads - KPI Overview"
    assert analyzer.commented == ["kpi_overview", "top_performers", "kpi_overview", "top_performers"]
    assert progress == [
        "Initializing deck renderer...",
        "Generating analysis...",
        "Building slides for Meta One...",
        "Building slides for Google One...",
        "Finalizing deck...",
    ]


@pytest.mark.anyio
async def test_empty_analysis_adds_nothing(may_2024):
    renderer = JsonDeckRenderer()
    summary = make_summary(may_2024, [make_campaign("A", may_2024, spend=10.0)])
    await compose_deck(
        _config([SlideSelection(type="kpi_overview")]),
        [summary],
        renderer,
        ScriptedAnalyzer(summary="", commentary=None),
    )
    assert [s.type for s in renderer.slides] == ["title", "kpi_overview"]
    assert renderer.slides[1].commentary is None


@pytest.mark.anyio
async def test_design_token_overrides_reach_the_renderer():
    renderer = JsonDeckRenderer()
    output = await compose_deck(
        _config(design_tokens={"colors": {"accent": "#ff0000"}}), [], renderer, NoopAnalyzer()
    )
    document = json.loads(output.buffer)
    assert document["design_tokens"]["colors"]["accent"] == "#ff0000"
    assert document["design_tokens"]["colors"]["primary"] == "#1a1a2e"


def test_unknown_slide_type_is_rejected():
    with pytest.raises(ValueError):
        SlideSelection(type="pie_of_the_month")
