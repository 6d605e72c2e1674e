"""
Client and organization rollups over fetched account summaries.

Blended metrics:
- total_spend   = Meta spend + Google spend
- total_revenue = Shopify revenue when a store is present, else ad-attributed revenue
- mer           = total_spend / total_revenue * 100
- roas          = total_revenue / total_spend
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from prism.models import (
    GOOGLE,
    META,
    AccountSummary,
    DateRange,
    EcommerceSummary,
    NormalizedEcommerceMetrics,
    NormalizedMetrics,
    Summary,
    aggregate_ecommerce,
    aggregate_metrics,
    percent_change,
    safe_ratio,
)
from prism.registry import ConnectorRegistry
from prism.resources.reporting.aggregation_service import FetchBatchResult, fetch_for_accounts
from prism.store import AccountStore

logger = logging.getLogger(__name__)


@dataclass
class RollupPoint:
    date: str
    spend: float = 0.0
    revenue: float = 0.0


@dataclass
class PeriodTotals:
    total_spend: float
    total_revenue: float
    mer: float
    roas: float

    @classmethod
    def from_totals(cls, spend: float, revenue: float) -> "PeriodTotals":
        return cls(
            total_spend=spend,
            total_revenue=revenue,
            mer=safe_ratio(spend, revenue, 100.0),
            roas=safe_ratio(revenue, spend),
        )


@dataclass
class PeriodComparison:
    previous: PeriodTotals
    changes: Dict[str, Optional[float]]


@dataclass
class ClientRollup:
    client_id: str
    date_range: DateRange
    totals: PeriodTotals
    meta: Optional[NormalizedMetrics] = None
    google: Optional[NormalizedMetrics] = None
    shopify: Optional[NormalizedEcommerceMetrics] = None
    time_series: List[RollupPoint] = field(default_factory=list)
    comparison: Optional[PeriodComparison] = None
    account_count: int = 0


@dataclass
class OrganizationRollup:
    date_range: DateRange
    totals: PeriodTotals
    clients: List[ClientRollup]
    meta: Optional[NormalizedMetrics] = None
    google: Optional[NormalizedMetrics] = None
    shopify: Optional[NormalizedEcommerceMetrics] = None
    time_series: List[RollupPoint] = field(default_factory=list)
    comparison: Optional[PeriodComparison] = None


def _has_ad_activity(m: NormalizedMetrics) -> bool:
    return m.spend != 0 or m.conversions != 0 or m.revenue != 0


def _has_store_activity(m: NormalizedEcommerceMetrics) -> bool:
    return m.revenue != 0 or m.orders != 0


def _compare(current: PeriodTotals, previous: PeriodTotals) -> PeriodComparison:
    return PeriodComparison(
        previous=previous,
        changes={
            "total_spend": percent_change(current.total_spend, previous.total_spend),
            "total_revenue": percent_change(current.total_revenue, previous.total_revenue),
            "mer": percent_change(current.mer, previous.mer),
            "roas": percent_change(current.roas, previous.roas),
        },
    )


def _blend(
    meta: Optional[NormalizedMetrics],
    google: Optional[NormalizedMetrics],
    shopify: Optional[NormalizedEcommerceMetrics],
) -> PeriodTotals:
    ads = [m for m in (meta, google) if m is not None]
    spend = sum(m.spend for m in ads)
    revenue = shopify.revenue if shopify is not None else sum(m.revenue for m in ads)
    return PeriodTotals.from_totals(spend, revenue)


def _merge_points(series: Iterable[Iterable[RollupPoint]]) -> List[RollupPoint]:
    buckets: Dict[str, RollupPoint] = {}
    for points in series:
        for p in points:
            bucket = buckets.setdefault(p.date, RollupPoint(date=p.date))
            bucket.spend += p.spend
            bucket.revenue += p.revenue
    # YYYY-MM-DD sorts lexicographically
    return [buckets[d] for d in sorted(buckets)]


def build_client_rollup(client_id: str, date_range: DateRange, summaries: Sequence[Summary]) -> ClientRollup:
    ad_summaries: Dict[str, List[AccountSummary]] = defaultdict(list)
    stores: List[EcommerceSummary] = []
    for s in summaries:
        if isinstance(s, EcommerceSummary):
            stores.append(s)
        else:
            ad_summaries[s.account.platform].append(s)

    meta = aggregate_metrics((s.metrics for s in ad_summaries[META]), date_range)
    google = aggregate_metrics((s.metrics for s in ad_summaries[GOOGLE]), date_range)
    shopify = aggregate_ecommerce((s.metrics for s in stores), date_range)

    meta_section = meta if _has_ad_activity(meta) else None
    google_section = google if _has_ad_activity(google) else None
    shopify_section = shopify if _has_store_activity(shopify) else None

    totals = _blend(meta, google, shopify_section)

    # Daily buckets: spend from ad platforms, revenue from Shopify when a store is present
    prefer_store_revenue = shopify_section is not None
    points: Dict[str, RollupPoint] = {}
    for platform_summaries in ad_summaries.values():
        for s in platform_summaries:
            for ts in s.time_series:
                p = points.setdefault(ts.date, RollupPoint(date=ts.date))
                p.spend += ts.metrics.spend
                if not prefer_store_revenue:
                    p.revenue += ts.metrics.revenue
    if prefer_store_revenue:
        for s in stores:
            for ets in s.time_series:
                points.setdefault(ets.date, RollupPoint(date=ets.date)).revenue += ets.metrics.revenue
    time_series = [points[d] for d in sorted(points)]

    comparison = None
    ad_prev = [
        s.previous_period_metrics
        for group in ad_summaries.values()
        for s in group
        if s.previous_period_metrics is not None
    ]
    store_prev = [s.previous_period_metrics for s in stores if s.previous_period_metrics is not None]
    if ad_prev or store_prev:
        previous_range = date_range.previous()
        prev_ads = aggregate_metrics(ad_prev, previous_range)
        prev_store = aggregate_ecommerce(store_prev, previous_range) if store_prev else None
        previous = PeriodTotals.from_totals(
            prev_ads.spend,
            prev_store.revenue if prev_store is not None else prev_ads.revenue,
        )
        comparison = _compare(totals, previous)

    return ClientRollup(
        client_id=client_id,
        date_range=date_range,
        totals=totals,
        meta=meta_section,
        google=google_section,
        shopify=shopify_section,
        time_series=time_series,
        comparison=comparison,
        account_count=len(summaries),
    )


def build_organization_rollup(date_range: DateRange, client_rollups: Sequence[ClientRollup]) -> OrganizationRollup:
    """Sum client rollups. Client totals already carry the Shopify-revenue preference."""
    meta_parts = [c.meta for c in client_rollups if c.meta is not None]
    google_parts = [c.google for c in client_rollups if c.google is not None]
    shopify_parts = [c.shopify for c in client_rollups if c.shopify is not None]

    meta = aggregate_metrics(meta_parts, date_range) if meta_parts else None
    google = aggregate_metrics(google_parts, date_range) if google_parts else None
    shopify = aggregate_ecommerce(shopify_parts, date_range) if shopify_parts else None

    totals = PeriodTotals.from_totals(
        sum(c.totals.total_spend for c in client_rollups),
        sum(c.totals.total_revenue for c in client_rollups),
    )

    comparison = None
    with_previous = [c.comparison.previous for c in client_rollups if c.comparison is not None]
    if with_previous:
        previous = PeriodTotals.from_totals(
            sum(p.total_spend for p in with_previous),
            sum(p.total_revenue for p in with_previous),
        )
        comparison = _compare(totals, previous)

    return OrganizationRollup(
        date_range=date_range,
        totals=totals,
        clients=list(client_rollups),
        meta=meta,
        google=google,
        shopify=shopify,
        time_series=_merge_points(c.time_series for c in client_rollups),
        comparison=comparison,
    )


async def fetch_client_rollup(
    client_id: str,
    store: AccountStore,
    date_range: DateRange,
    concurrency_limit: Optional[int] = None,
    per_call_timeout: Optional[float] = None,
    connectors: Optional[ConnectorRegistry] = None,
) -> Tuple[ClientRollup, FetchBatchResult]:
    """Load the client's active accounts, fetch them all, and roll them up."""
    accounts = store.list_active_accounts_for_client(client_id)
    if not accounts:
        logger.info("Client %s has no active accounts", client_id)
    batch = await fetch_for_accounts(
        accounts,
        date_range,
        concurrency_limit=concurrency_limit,
        per_call_timeout=per_call_timeout,
        connectors=connectors,
        store=store,
    )
    return build_client_rollup(client_id, date_range, batch.successes), batch
