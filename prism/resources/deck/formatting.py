"""Display formatting for slide values."""

from __future__ import annotations

from typing import Optional

from prism.models import DateRange

CURRENCY_METRICS = frozenset({"spend", "revenue", "cpc", "cpm", "cpa"})
COUNT_METRICS = frozenset({"impressions", "clicks", "conversions"})

METRIC_LABELS = {
    "spend": "Spend",
    "impressions": "Impressions",
    "clicks": "Clicks",
    "conversions": "Conversions",
    "revenue": "Revenue",
    "roas": "ROAS",
    "ctr": "CTR",
    "cpc": "CPC",
    "cpm": "CPM",
    "cpa": "CPA",
}


def format_currency(value: float) -> str:
    return f"${value:,.2f}"


def format_number(value: float) -> str:
    return f"{value:,.0f}"


def format_percent(value: float) -> str:
    return f"{value:.2f}%"


def format_roas(value: float) -> str:
    return f"{value:.2f}x"


def format_metric(key: str, value: float) -> str:
    if key in CURRENCY_METRICS:
        return format_currency(value)
    if key == "roas":
        return format_roas(value)
    if key == "ctr":
        return format_percent(value)
    if key in COUNT_METRICS:
        return format_number(value)
    return str(value)


def metric_label(key: str) -> str:
    return METRIC_LABELS.get(key, key)


def trend_of(change: Optional[float]) -> Optional[str]:
    if change is None:
        return None
    if change > 0:
        return "up"
    if change < 0:
        return "down"
    return "flat"


def date_range_label(date_range: DateRange) -> str:
    return f"{date_range.start:%b %d, %Y} - {date_range.end:%b %d, %Y}"
