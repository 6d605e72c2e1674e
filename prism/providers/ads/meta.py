"""
Meta (Facebook/Instagram) Marketing API connector.

OAuth produces a long-lived user token (~60 days, ads_read). Account IDs are
numeric; the act_ prefix is added in requests and stripped from responses.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from prism.errors import ApiError, DataValidationError, NetworkError, PrismError, classify_http_error
from prism.models import (
    META,
    AccountSummary,
    AdAccount,
    BreakdownSegment,
    DateRange,
    NormalizedBreakdown,
    NormalizedCampaign,
    NormalizedMetrics,
    NormalizedTimeSeries,
    TokenSet,
    aggregate_campaigns,
    aggregate_metrics,
)
from prism.config import MetaConfig
from prism.providers.ads.base import AdsConnector, FetchParams, MetricsParams, OAuthCallbackParams
from prism.providers.ads.utils import error_message, group_by, require_list, to_float, to_int

logger = logging.getLogger(__name__)

META_GRAPH_API_VERSION = "v21.0"
META_GRAPH_BASE = f"https://graph.facebook.com/{META_GRAPH_API_VERSION}"
META_DIALOG_URL = f"https://www.facebook.com/{META_GRAPH_API_VERSION}/dialog/oauth"
META_SCOPES = ["ads_read"]
LONG_LIVED_TOKEN_TTL_S = 60 * 24 * 3600

# Graph API error codes
TOKEN_EXPIRED_CODES = frozenset({190})
RATE_LIMIT_CODES = frozenset({4, 17})
ACCOUNT_ACCESS_CODES = frozenset({10, 200})

# Order matters only for which actions count; the first matching entry in the
# row's own actions list wins and matching types are never summed.
CONVERSION_ACTION_TYPES = frozenset({
    "offsite_conversion.fb_pixel_purchase",
    "purchase",
    "omni_purchase",
    "complete_registration",
    "lead",
    "offsite_conversion.fb_pixel_lead",
})
REVENUE_ACTION_TYPES = frozenset({
    "offsite_conversion.fb_pixel_purchase",
    "purchase",
    "omni_purchase",
})

CAMPAIGN_STATUS_MAP = {
    "ACTIVE": "active",
    "PAUSED": "paused",
    "ARCHIVED": "archived",
}

INSIGHT_METRIC_FIELDS = ["spend", "impressions", "clicks", "actions", "action_values"]


def _first_action_value(actions: Any, allowed: frozenset) -> float:
    if not isinstance(actions, list):
        return 0.0
    for item in actions:
        if isinstance(item, dict) and item.get("action_type") in allowed:
            return to_float(item.get("value"), item["action_type"], "Meta")
    return 0.0


def extract_conversions(actions: Any) -> float:
    return _first_action_value(actions, CONVERSION_ACTION_TYPES)


def extract_revenue(action_values: Any) -> float:
    return _first_action_value(action_values, REVENUE_ACTION_TYPES)


def normalize_insight_rows(rows: List[Dict[str, Any]], date_range: DateRange) -> NormalizedMetrics:
    """Aggregate one or more insight rows into NormalizedMetrics."""
    spend = 0.0
    impressions = 0
    clicks = 0
    conversions = 0.0
    revenue = 0.0
    for row in rows:
        spend += to_float(row.get("spend"), "spend", "Meta")
        impressions += to_int(row.get("impressions"), "impressions", "Meta")
        clicks += to_int(row.get("clicks"), "clicks", "Meta")
        conversions += extract_conversions(row.get("actions"))
        revenue += extract_revenue(row.get("action_values"))
    return NormalizedMetrics.from_totals(
        date_range,
        spend=spend,
        impressions=impressions,
        clicks=clicks,
        conversions=conversions,
        revenue=revenue,
    )


def map_campaign_status(status: Optional[str]) -> str:
    return CAMPAIGN_STATUS_MAP.get((status or "").upper(), "completed")


def map_account_status(code: Any) -> str:
    # 1 = ACTIVE, 101 = CLOSED; everything else (disabled, unsettled, in review...) is unusable
    if code == 1:
        return "active"
    if code == 101:
        return "closed"
    return "disabled"


def _day_range(day: str, fallback: DateRange) -> DateRange:
    try:
        start = datetime.strptime(day, "%Y-%m-%d")
    except (TypeError, ValueError):
        return fallback
    return DateRange(start=start, end=start)


def _time_range_param(date_range: DateRange) -> str:
    return json.dumps({"since": date_range.start_day, "until": date_range.end_day})


def _account_path(account_id: str) -> str:
    aid = (account_id or "").replace("act_", "").strip()
    if not aid:
        raise ApiError("Meta", "account_id is required")
    return f"/act_{aid}"


class MetaAdsConnector(AdsConnector):
    platform = META
    display_name = "Meta"

    # ── HTTP ──────────────────────────────────────────────────────────

    async def _get(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        p = dict(params or {})
        if access_token:
            p["access_token"] = access_token
        try:
            resp = await client.get(url, params=p or None)
        except httpx.TransportError as e:
            logger.error("Meta Ads network error: url=%s error=%s", url.split("?")[0], e)
            raise NetworkError(self.display_name) from e

        try:
            body = resp.json() if resp.text else {}
        except ValueError:
            body = {}

        if resp.status_code >= 400:
            logger.error(
                "Meta Ads API error: status=%s path=%s body=%s",
                resp.status_code,
                url.split("?")[0],
                (resp.text or "")[:2000],
            )
            err = body.get("error") if isinstance(body, dict) else None
            raise classify_http_error(
                self.display_name,
                resp.status_code,
                headers=resp.headers,
                platform_code=err.get("code") if isinstance(err, dict) else None,
                message=error_message(body),
                token_expired_codes=TOKEN_EXPIRED_CODES,
                rate_limit_codes=RATE_LIMIT_CODES,
                account_access_codes=ACCOUNT_ACCESS_CODES,
            )
        if not isinstance(body, dict):
            raise DataValidationError("expected a JSON object", platform=self.display_name)
        return body

    async def _get_all(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: Dict[str, Any],
        access_token: str,
        max_pages: int = 50,
    ) -> List[Dict[str, Any]]:
        """Follow ``paging.next`` cursor URLs until exhausted (or max_pages)."""
        rows: List[Dict[str, Any]] = []
        data = await self._get(client, f"{META_GRAPH_BASE}{path}", params, access_token)
        pages = 1
        while True:
            rows.extend(require_list(data, "data", self.display_name))
            next_url = (data.get("paging") or {}).get("next")
            if not next_url or pages >= max_pages:
                break
            # next is a full URL that already carries the token and cursor
            data = await self._get(client, next_url)
            pages += 1
        return rows

    # ── OAuth ─────────────────────────────────────────────────────────

    def get_auth_url(self, redirect_uri: str, state: Optional[str] = None) -> str:
        config = MetaConfig.from_env()
        params = {
            "client_id": config.app_id,
            "redirect_uri": redirect_uri,
            "scope": ",".join(META_SCOPES),
            "response_type": "code",
        }
        if state:
            params["state"] = state
        return f"{META_DIALOG_URL}?{urlencode(params)}"

    async def _exchange_long_lived(self, client: httpx.AsyncClient, config: MetaConfig, token: str) -> Dict[str, Any]:
        return await self._get(
            client,
            f"{META_GRAPH_BASE}/oauth/access_token",
            {
                "grant_type": "fb_exchange_token",
                "client_id": config.app_id,
                "client_secret": config.app_secret,
                "fb_exchange_token": token,
            },
        )

    @staticmethod
    def _expires_at(data: Dict[str, Any]) -> datetime:
        expires_in = data.get("expires_in") or LONG_LIVED_TOKEN_TTL_S
        return datetime.now(timezone.utc) + timedelta(seconds=to_int(expires_in, "expires_in", "Meta"))

    async def authorize(self, params: OAuthCallbackParams) -> TokenSet:
        config = MetaConfig.from_env()
        async with self._client() as client:
            short_lived = await self._get(
                client,
                f"{META_GRAPH_BASE}/oauth/access_token",
                {
                    "client_id": config.app_id,
                    "client_secret": config.app_secret,
                    "redirect_uri": params.redirect_uri,
                    "code": params.code,
                },
            )
            if not short_lived.get("access_token"):
                raise DataValidationError("token response has no access_token", platform=self.display_name)
            long_lived = await self._exchange_long_lived(client, config, short_lived["access_token"])

        if not long_lived.get("access_token"):
            raise DataValidationError("token response has no access_token", platform=self.display_name)
        logger.info("Meta authorization complete; long-lived token issued")
        return TokenSet(
            access_token=long_lived["access_token"],
            expires_at=self._expires_at(long_lived),
            scopes=list(META_SCOPES),
            platform=META,
        )

    async def refresh_token(self, token_set: TokenSet) -> TokenSet:
        """Meta has no refresh grant; a valid long-lived token is re-exchanged."""
        config = MetaConfig.from_env()
        async with self._client() as client:
            data = await self._exchange_long_lived(client, config, token_set.access_token)
        if not data.get("access_token"):
            raise DataValidationError("token response has no access_token", platform=self.display_name)
        return TokenSet(
            access_token=data["access_token"],
            refresh_token=token_set.refresh_token,
            expires_at=self._expires_at(data),
            scopes=list(token_set.scopes),
            platform=META,
        )

    # ── Accounts ──────────────────────────────────────────────────────

    @staticmethod
    def _to_account(info: Dict[str, Any], account_id: Optional[str] = None) -> AdAccount:
        return AdAccount(
            id=account_id or str(info.get("id") or "").replace("act_", ""),
            name=info.get("name") or "",
            platform=META,
            currency=info.get("currency") or "USD",
            timezone=info.get("timezone_name") or "UTC",
            status=map_account_status(info.get("account_status")),
        )

    async def list_accounts(self, token_set: TokenSet) -> List[AdAccount]:
        async with self._client() as client:
            rows = await self._get_all(
                client,
                "/me/adaccounts",
                {"fields": "id,name,currency,timezone_name,account_status", "limit": 200},
                token_set.access_token,
            )
        accounts = [self._to_account(row) for row in rows]
        logger.info("Meta listed %d ad account(s)", len(accounts))
        return accounts

    async def _fetch_account_info(self, client: httpx.AsyncClient, account_id: str, token: str) -> AdAccount:
        data = await self._get(
            client,
            f"{META_GRAPH_BASE}{_account_path(account_id)}",
            {"fields": "id,name,currency,timezone_name,account_status"},
            token,
        )
        return self._to_account(data, account_id=account_id.replace("act_", ""))

    # ── Campaigns ─────────────────────────────────────────────────────

    async def _fetch_campaign_rows(
        self,
        client: httpx.AsyncClient,
        account_id: str,
        token: str,
        date_range: DateRange,
    ) -> List[Dict[str, Any]]:
        return await self._get_all(
            client,
            f"{_account_path(account_id)}/insights",
            {
                "fields": ",".join(["campaign_id", "campaign_name", "objective"] + INSIGHT_METRIC_FIELDS),
                "level": "campaign",
                "time_range": _time_range_param(date_range),
                "limit": 500,
            },
            token,
        )

    async def _fetch_campaign_statuses(self, client: httpx.AsyncClient, account_id: str, token: str) -> Dict[str, str]:
        rows = await self._get_all(
            client,
            f"{_account_path(account_id)}/campaigns",
            {"fields": "id,status", "limit": 500},
            token,
        )
        return {str(row.get("id")): row.get("status") or "" for row in rows}

    async def _fetch_campaigns(
        self,
        client: httpx.AsyncClient,
        account_id: str,
        token: str,
        date_range: DateRange,
    ) -> List[NormalizedCampaign]:
        rows, statuses = await asyncio.gather(
            self._fetch_campaign_rows(client, account_id, token, date_range),
            self._fetch_campaign_statuses(client, account_id, token),
        )
        campaigns: List[NormalizedCampaign] = []
        for row in rows:
            campaign_id = str(row.get("campaign_id") or "")
            campaigns.append(
                NormalizedCampaign(
                    id=campaign_id,
                    name=row.get("campaign_name") or "Unknown Campaign",
                    status=map_campaign_status(statuses.get(campaign_id)),
                    platform=META,
                    objective=row.get("objective"),
                    metrics=normalize_insight_rows([row], date_range),
                )
            )
        return campaigns

    async def fetch_campaigns(self, params: FetchParams) -> List[NormalizedCampaign]:
        async with self._client() as client:
            return await self._fetch_campaigns(
                client, params.account_id, params.token_set.access_token, params.date_range
            )

    # ── Time series & breakdowns ──────────────────────────────────────

    async def _fetch_time_series(
        self,
        client: httpx.AsyncClient,
        account_id: str,
        token: str,
        date_range: DateRange,
    ) -> List[NormalizedTimeSeries]:
        rows = await self._get_all(
            client,
            f"{_account_path(account_id)}/insights",
            {
                "fields": ",".join(INSIGHT_METRIC_FIELDS),
                "time_increment": 1,
                "time_range": _time_range_param(date_range),
                "limit": 500,
            },
            token,
        )
        series: List[NormalizedTimeSeries] = []
        for row in rows:
            day = row.get("date_start") or ""
            series.append(
                NormalizedTimeSeries(date=day, metrics=normalize_insight_rows([row], _day_range(day, date_range)))
            )
        return series

    async def _fetch_breakdown_rows(
        self,
        client: httpx.AsyncClient,
        account_id: str,
        token: str,
        date_range: DateRange,
        breakdowns: str,
    ) -> List[Dict[str, Any]]:
        return await self._get_all(
            client,
            f"{_account_path(account_id)}/insights",
            {
                "fields": ",".join(INSIGHT_METRIC_FIELDS),
                "breakdowns": breakdowns,
                "time_range": _time_range_param(date_range),
                "limit": 500,
            },
            token,
        )

    async def _fetch_breakdowns(
        self,
        client: httpx.AsyncClient,
        account_id: str,
        token: str,
        date_range: DateRange,
    ) -> List[NormalizedBreakdown]:
        age_gender, device = await asyncio.gather(
            self._fetch_breakdown_rows(client, account_id, token, date_range, "age,gender"),
            self._fetch_breakdown_rows(client, account_id, token, date_range, "device_platform"),
        )

        def _segments(rows: List[Dict[str, Any]], key: str) -> List[BreakdownSegment]:
            groups = group_by(rows, lambda r: r.get(key) or "Unknown")
            return [
                BreakdownSegment(label=label, metrics=normalize_insight_rows(grouped, date_range))
                for label, grouped in groups.items()
            ]

        return [
            NormalizedBreakdown(dimension="age", segments=_segments(age_gender, "age")),
            NormalizedBreakdown(dimension="gender", segments=_segments(age_gender, "gender")),
            NormalizedBreakdown(dimension="device", segments=_segments(device, "device_platform")),
        ]

    async def _previous_period_metrics(
        self,
        client: httpx.AsyncClient,
        account_id: str,
        token: str,
        date_range: DateRange,
    ) -> Optional[NormalizedMetrics]:
        previous = date_range.previous()
        try:
            rows = await self._fetch_campaign_rows(client, account_id, token, previous)
        except PrismError as e:
            logger.warning("Meta previous-period fetch failed for %s: %s", account_id, e)
            return None
        return aggregate_metrics((normalize_insight_rows([r], previous) for r in rows), previous)

    # ── Summary ───────────────────────────────────────────────────────

    async def fetch_account_summary(self, params: MetricsParams) -> AccountSummary:
        account_id = params.account_id
        token = params.token_set.access_token
        date_range = params.date_range

        async with self._client() as client:
            results = await asyncio.gather(
                self._fetch_account_info(client, account_id, token),
                self._fetch_campaigns(client, account_id, token, date_range),
                self._fetch_time_series(client, account_id, token, date_range),
                self._fetch_breakdowns(client, account_id, token, date_range),
                self._previous_period_metrics(client, account_id, token, date_range),
                return_exceptions=True,
            )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        account, campaigns, time_series, breakdowns, previous = results

        return AccountSummary(
            account=account,
            metrics=aggregate_campaigns(campaigns, date_range),
            previous_period_metrics=previous,
            campaigns=campaigns,
            time_series=time_series,
            breakdowns=breakdowns,
        )
