"""Shared fixtures and builders for the prism test suite."""

from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import patch

import httpx
import pytest

from prism.models import (
    AccountSummary,
    AdAccount,
    DateRange,
    NormalizedCampaign,
    NormalizedMetrics,
    TokenSet,
    aggregate_campaigns,
)

PLATFORM_ENV = {
    "META_APP_ID": "meta-app",
    "META_APP_SECRET": "meta-secret",
    "GOOGLE_ADS_CLIENT_ID": "google-client",
    "GOOGLE_ADS_CLIENT_SECRET": "google-secret",
    "GOOGLE_ADS_DEVELOPER_TOKEN": "dev-token",
    "SHOPIFY_CLIENT_ID": "shopify-client",
    "SHOPIFY_CLIENT_SECRET": "shopify-secret",
    "PRISM_STATE_SECRET": "state-signing-secret",
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def platform_env():
    with patch.dict(os.environ, PLATFORM_ENV):
        yield


@pytest.fixture
def may_2024() -> DateRange:
    return DateRange(start=datetime(2024, 5, 1), end=datetime(2024, 5, 31, 23, 59, 59))


def json_response(data: Any, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(data).encode("utf-8"), headers={
        "content-type": "application/json",
        **(headers or {}),
    })


def recording_transport(handler: Callable[[httpx.Request], httpx.Response]):
    """MockTransport plus the list of requests it saw."""
    seen: List[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.MockTransport(_handler), seen


def token(platform: str, expires_in: Optional[timedelta] = timedelta(days=30), refresh: Optional[str] = None) -> TokenSet:
    return TokenSet(
        access_token=f"{platform}-access",
        platform=platform,
        refresh_token=refresh,
        expires_at=datetime.now(timezone.utc) + expires_in if expires_in is not None else None,
    )


def make_account(platform: str = "meta", account_id: str = "1", name: str = "Acme") -> AdAccount:
    return AdAccount(id=account_id, name=name, platform=platform, currency="USD", timezone="UTC")


def make_campaign(
    name: str,
    date_range: DateRange,
    spend: float = 0.0,
    conversions: float = 0.0,
    revenue: float = 0.0,
    impressions: int = 0,
    clicks: int = 0,
    platform: str = "meta",
) -> NormalizedCampaign:
    return NormalizedCampaign(
        id=name.lower().replace(" ", "-"),
        name=name,
        status="active",
        platform=platform,
        metrics=NormalizedMetrics.from_totals(
            date_range,
            spend=spend,
            impressions=impressions,
            clicks=clicks,
            conversions=conversions,
            revenue=revenue,
        ),
    )


def make_summary(
    date_range: DateRange,
    campaigns: Optional[List[NormalizedCampaign]] = None,
    platform: str = "meta",
    name: str = "Acme",
    previous: Optional[NormalizedMetrics] = None,
) -> AccountSummary:
    campaigns = campaigns or []
    return AccountSummary(
        account=make_account(platform, name=name),
        metrics=aggregate_campaigns(campaigns, date_range),
        campaigns=campaigns,
        previous_period_metrics=previous,
    )
