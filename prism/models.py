"""
Normalized, platform-agnostic data model.

Every connector returns these types. Everything downstream (aggregation,
deck composition) is platform-agnostic.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Union

META = "meta"
GOOGLE = "google"
SHOPIFY = "shopify"

PLATFORM_LABELS = {
    META: "Meta Ads",
    GOOGLE: "Google Ads",
    SHOPIFY: "Shopify",
}

METRIC_KEYS = (
    "spend",
    "impressions",
    "clicks",
    "conversions",
    "revenue",
    "roas",
    "ctr",
    "cpc",
    "cpm",
    "cpa",
)

BREAKDOWN_DIMENSIONS = ("age", "gender", "device", "placement", "date")

ACCOUNT_STATUSES = ("active", "disabled", "closed")
CAMPAIGN_STATUSES = ("active", "paused", "completed", "archived")


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    @property
    def length(self) -> timedelta:
        return self.end - self.start

    def previous(self) -> "DateRange":
        """Immediately preceding period of identical length: [start - length, start - 1ms]."""
        return DateRange(
            start=self.start - self.length,
            end=self.start - timedelta(milliseconds=1),
        )

    @property
    def start_day(self) -> str:
        return self.start.strftime("%Y-%m-%d")

    @property
    def end_day(self) -> str:
        return self.end.strftime("%Y-%m-%d")


@dataclass
class TokenSet:
    access_token: str
    platform: str
    scopes: List[str] = field(default_factory=list)
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None   # None for Shopify offline tokens


@dataclass
class AdAccount:
    id: str
    name: str
    platform: str
    currency: str
    timezone: str
    status: str = "active"                  # active | disabled | closed
    manager_customer_id: Optional[str] = None   # Google MCC routing


def safe_ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    return (numerator / denominator) * scale if denominator > 0 else 0.0


def percent_change(current: float, previous: float) -> Optional[float]:
    """Period-over-period change in percent. From zero: 100 if anything appeared, else None."""
    if previous == 0:
        return 100.0 if current > 0 else None
    return (current - previous) / previous * 100.0


@dataclass
class NormalizedMetrics:
    spend: float
    impressions: int
    clicks: int
    conversions: float
    revenue: float
    roas: float
    ctr: float                              # percent
    cpc: float
    cpm: float
    cpa: float
    date_range: DateRange

    @classmethod
    def from_totals(
        cls,
        date_range: DateRange,
        spend: float = 0.0,
        impressions: int = 0,
        clicks: int = 0,
        conversions: float = 0.0,
        revenue: float = 0.0,
    ) -> "NormalizedMetrics":
        """Build metrics from raw totals; a zero denominator always yields 0."""
        return cls(
            spend=spend,
            impressions=impressions,
            clicks=clicks,
            conversions=conversions,
            revenue=revenue,
            roas=safe_ratio(revenue, spend),
            ctr=safe_ratio(clicks, impressions, 100.0),
            cpc=safe_ratio(spend, clicks),
            cpm=safe_ratio(spend, impressions, 1000.0),
            cpa=safe_ratio(spend, conversions),
            date_range=date_range,
        )

    @classmethod
    def empty(cls, date_range: DateRange) -> "NormalizedMetrics":
        return cls.from_totals(date_range)

    def value(self, key: str) -> float:
        if key not in METRIC_KEYS:
            raise KeyError(key)
        return getattr(self, key)


def aggregate_metrics(items: Iterable[NormalizedMetrics], date_range: DateRange) -> NormalizedMetrics:
    """Sum additive fields and recompute every ratio from the sums."""
    spend = 0.0
    impressions = 0
    clicks = 0
    conversions = 0.0
    revenue = 0.0
    for m in items:
        spend += m.spend
        impressions += m.impressions
        clicks += m.clicks
        conversions += m.conversions
        revenue += m.revenue
    return NormalizedMetrics.from_totals(
        date_range,
        spend=spend,
        impressions=impressions,
        clicks=clicks,
        conversions=conversions,
        revenue=revenue,
    )


@dataclass
class NormalizedCampaign:
    id: str
    name: str
    status: str                             # active | paused | completed | archived
    platform: str
    metrics: NormalizedMetrics
    objective: Optional[str] = None


def aggregate_campaigns(campaigns: Iterable[NormalizedCampaign], date_range: DateRange) -> NormalizedMetrics:
    return aggregate_metrics((c.metrics for c in campaigns), date_range)


@dataclass
class NormalizedTimeSeries:
    date: str                               # YYYY-MM-DD
    metrics: NormalizedMetrics


@dataclass
class BreakdownSegment:
    label: str
    metrics: NormalizedMetrics


@dataclass
class NormalizedBreakdown:
    dimension: str                          # age | gender | device | placement | date
    segments: List[BreakdownSegment] = field(default_factory=list)


@dataclass
class AccountSummary:
    account: AdAccount
    metrics: NormalizedMetrics
    campaigns: List[NormalizedCampaign] = field(default_factory=list)
    time_series: List[NormalizedTimeSeries] = field(default_factory=list)
    breakdowns: List[NormalizedBreakdown] = field(default_factory=list)
    previous_period_metrics: Optional[NormalizedMetrics] = None


# ── E-commerce ───────────────────────────────────────────────────────────────


@dataclass
class NormalizedEcommerceMetrics:
    revenue: float
    orders: int
    average_order_value: float
    refunds: int
    refund_amount: float
    new_customers: int
    returning_customers: int
    date_range: DateRange
    conversion_rate: float = 0.0            # needs traffic data the orders API lacks

    @classmethod
    def empty(cls, date_range: DateRange) -> "NormalizedEcommerceMetrics":
        return cls(
            revenue=0.0,
            orders=0,
            average_order_value=0.0,
            refunds=0,
            refund_amount=0.0,
            new_customers=0,
            returning_customers=0,
            date_range=date_range,
        )


def aggregate_ecommerce(
    items: Iterable[NormalizedEcommerceMetrics], date_range: DateRange
) -> NormalizedEcommerceMetrics:
    total = NormalizedEcommerceMetrics.empty(date_range)
    for m in items:
        total.revenue += m.revenue
        total.orders += m.orders
        total.refunds += m.refunds
        total.refund_amount += m.refund_amount
        total.new_customers += m.new_customers
        total.returning_customers += m.returning_customers
    total.average_order_value = safe_ratio(total.revenue, total.orders)
    return total


@dataclass
class NormalizedProduct:
    id: str
    name: str
    revenue: float
    units_sold: int
    refund_rate: float = 0.0


@dataclass
class NormalizedEcommerceTimeSeries:
    date: str
    metrics: NormalizedEcommerceMetrics


@dataclass
class EcommerceSummary:
    account: AdAccount
    metrics: NormalizedEcommerceMetrics
    top_products: List[NormalizedProduct] = field(default_factory=list)
    time_series: List[NormalizedEcommerceTimeSeries] = field(default_factory=list)
    previous_period_metrics: Optional[NormalizedEcommerceMetrics] = None


Summary = Union[AccountSummary, EcommerceSummary]
