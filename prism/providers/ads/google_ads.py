"""
Google Ads reporting connector (REST, GAQL via SearchStream).

Design goals:
- OAuth with offline access so every connection carries a refresh token.
- Sub-accounts under a manager (MCC) are routed with the login-customer-id header;
  the manager id is discovered by list_accounts and stored on the AdAccount.
- A developer token is required in every call.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from prism.config import GoogleAdsConfig
from prism.errors import ApiError, DataValidationError, NetworkError, PrismError, TokenExpiredError, classify_http_error
from prism.models import (
    GOOGLE,
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
)
from prism.providers.ads.base import AdsConnector, FetchParams, MetricsParams, OAuthCallbackParams
from prism.providers.ads.utils import error_message, group_by, to_float, to_int

logger = logging.getLogger(__name__)

ADWORDS_SCOPE = "https://www.googleapis.com/auth/adwords"
GOOGLE_OAUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_ADS_API_VERSION = "v20"
GOOGLE_ADS_API_BASE = f"https://googleads.googleapis.com/{GOOGLE_ADS_API_VERSION}"

DEFAULT_CURRENCY = "USD"
DEFAULT_TIMEZONE = "America/New_York"

TOKEN_EXPIRED_CODES = frozenset({"UNAUTHENTICATED"})
RATE_LIMIT_CODES = frozenset({"RESOURCE_EXHAUSTED"})
ACCOUNT_ACCESS_CODES = frozenset({"PERMISSION_DENIED"})

CAMPAIGN_STATUS_MAP = {
    "ENABLED": "active",
    "PAUSED": "paused",
    "REMOVED": "archived",
}

METRIC_SELECT = (
    "metrics.impressions, metrics.clicks, metrics.cost_micros, "
    "metrics.conversions, metrics.conversions_value"
)


def _field(obj: Any, camel: str, snake: Optional[str] = None) -> Any:
    """REST responses use camelCase; tolerate snake_case payloads too."""
    if not isinstance(obj, dict):
        return None
    if camel in obj:
        return obj[camel]
    return obj.get(snake) if snake else None


def micros_to_units(value: Any) -> float:
    return to_float(value, "costMicros", "Google Ads") / 1_000_000.0


def normalize_rows(rows: List[Dict[str, Any]], date_range: DateRange) -> NormalizedMetrics:
    """Sum GAQL metric rows. Ratios are recomputed from the sums, never taken from row ctr/average_cpc."""
    spend = 0.0
    impressions = 0
    clicks = 0
    conversions = 0.0
    revenue = 0.0
    for row in rows:
        m = row.get("metrics") or {}
        spend += micros_to_units(_field(m, "costMicros", "cost_micros"))
        impressions += to_int(_field(m, "impressions"), "impressions", "Google Ads")
        clicks += to_int(_field(m, "clicks"), "clicks", "Google Ads")
        conversions += to_float(_field(m, "conversions"), "conversions", "Google Ads")
        revenue += to_float(_field(m, "conversionsValue", "conversions_value"), "conversionsValue", "Google Ads")
    return NormalizedMetrics.from_totals(
        date_range,
        spend=spend,
        impressions=impressions,
        clicks=clicks,
        conversions=conversions,
        revenue=revenue,
    )


def map_campaign_status(status: Optional[str]) -> str:
    return CAMPAIGN_STATUS_MAP.get(status or "", "completed")


def device_label(device: str) -> str:
    return device.replace("_", " ").lower()


def _date_clause(date_range: DateRange) -> str:
    return f"segments.date BETWEEN '{date_range.start_day}' AND '{date_range.end_day}'"


def _clean_customer_id(customer_id: Optional[str]) -> str:
    # Must be hyphen-free per Google Ads docs.
    return (customer_id or "").replace("-", "").strip()


class GoogleAdsConnector(AdsConnector):
    platform = GOOGLE
    display_name = "Google Ads"

    # ── HTTP ──────────────────────────────────────────────────────────

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> Any:
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.error("Google Ads network error: url=%s error=%s", url, e)
            raise NetworkError(self.display_name) from e

        try:
            body = resp.json() if resp.text else {}
        except ValueError:
            body = {}

        if resp.status_code >= 400:
            request_id = resp.headers.get("request-id") or resp.headers.get("google-ads-request-id")
            logger.error(
                "Google Ads API error: status=%s url=%s request_id=%s body=%s",
                resp.status_code,
                url,
                request_id,
                (resp.text or "")[:2000],
            )
            # searchStream wraps errors in a one-element list
            if isinstance(body, list) and body:
                body = body[0]
            err = body.get("error") if isinstance(body, dict) else None
            raise classify_http_error(
                self.display_name,
                resp.status_code,
                headers=resp.headers,
                platform_code=err.get("status") if isinstance(err, dict) else None,
                message=error_message(body),
                token_expired_codes=TOKEN_EXPIRED_CODES,
                rate_limit_codes=RATE_LIMIT_CODES,
                account_access_codes=ACCOUNT_ACCESS_CODES,
            )
        return body

    def _headers(
        self,
        access_token: str,
        developer_token: str,
        login_customer_id: Optional[str] = None,
    ) -> Dict[str, str]:
        headers: Dict[str, str] = {
            "Authorization": f"Bearer {access_token}",
            "developer-token": developer_token,
            "Content-Type": "application/json",
        }
        if login_customer_id:
            headers["login-customer-id"] = _clean_customer_id(login_customer_id)
        return headers

    async def search_stream(
        self,
        client: httpx.AsyncClient,
        customer_id: str,
        query: str,
        access_token: str,
        developer_token: str,
        login_customer_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Run GAQL via GoogleAdsService.SearchStream and return the flattened result rows."""
        customer_id = _clean_customer_id(customer_id)
        if not customer_id:
            raise ApiError(self.display_name, "customer_id is required")

        chunks = await self._request(
            client,
            "POST",
            f"{GOOGLE_ADS_API_BASE}/customers/{customer_id}/googleAds:searchStream",
            headers=self._headers(access_token, developer_token, login_customer_id),
            json={"query": query},
        )
        if isinstance(chunks, dict):
            chunks = [chunks]
        if not isinstance(chunks, list):
            raise DataValidationError("searchStream returned an unexpected payload", platform=self.display_name)

        rows: List[Dict[str, Any]] = []
        for chunk in chunks:
            if isinstance(chunk, dict):
                rows.extend(r for r in chunk.get("results") or [] if isinstance(r, dict))
        return rows

    # ── OAuth ─────────────────────────────────────────────────────────

    def get_auth_url(self, redirect_uri: str, state: Optional[str] = None) -> str:
        config = GoogleAdsConfig.from_env()
        params = {
            "client_id": config.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": ADWORDS_SCOPE,
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_OAUTH_URL}?{urlencode(params)}"

    async def _token_request(self, form: Dict[str, str]) -> Dict[str, Any]:
        async with self._client() as client:
            data = await self._request(client, "POST", GOOGLE_TOKEN_URL, data=form)
        if not isinstance(data, dict) or not data.get("access_token"):
            raise DataValidationError("token response has no access_token", platform=self.display_name)
        return data

    @staticmethod
    def _expires_at(data: Dict[str, Any]) -> datetime:
        expires_in = data.get("expires_in") or 3600
        return datetime.now(timezone.utc) + timedelta(seconds=to_int(expires_in, "expires_in", "Google Ads"))

    async def authorize(self, params: OAuthCallbackParams) -> TokenSet:
        config = GoogleAdsConfig.from_env()
        data = await self._token_request(
            {
                "code": params.code,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "redirect_uri": params.redirect_uri,
                "grant_type": "authorization_code",
            }
        )
        if not data.get("refresh_token"):
            logger.warning("Google token exchange returned no refresh_token; reconnect will be needed on expiry")
        return TokenSet(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=self._expires_at(data),
            scopes=(data.get("scope") or ADWORDS_SCOPE).split(" "),
            platform=GOOGLE,
        )

    async def refresh_token(self, token_set: TokenSet) -> TokenSet:
        if not token_set.refresh_token:
            raise TokenExpiredError(self.display_name)
        config = GoogleAdsConfig.from_env()
        data = await self._token_request(
            {
                "refresh_token": token_set.refresh_token,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "grant_type": "refresh_token",
            }
        )
        return TokenSet(
            access_token=data["access_token"],
            refresh_token=token_set.refresh_token,
            expires_at=self._expires_at(data),
            scopes=list(token_set.scopes),
            platform=GOOGLE,
        )

    # ── Accounts ──────────────────────────────────────────────────────

    async def list_accessible_customers(
        self, client: httpx.AsyncClient, access_token: str, developer_token: str
    ) -> List[str]:
        data = await self._request(
            client,
            "GET",
            f"{GOOGLE_ADS_API_BASE}/customers:listAccessibleCustomers",
            headers=self._headers(access_token, developer_token),
        )
        names = _field(data, "resourceNames", "resource_names") or []
        return [str(name).replace("customers/", "") for name in names]

    async def list_accounts(self, token_set: TokenSet) -> List[AdAccount]:
        config = GoogleAdsConfig.from_env()
        accounts: List[AdAccount] = []
        seen = set()
        query = (
            "SELECT customer_client.id, customer_client.descriptive_name, customer_client.currency_code, "
            "customer_client.time_zone, customer_client.status, customer_client.manager "
            "FROM customer_client WHERE customer_client.status = 'ENABLED'"
        )

        async with self._client() as client:
            customer_ids = await self.list_accessible_customers(
                client, token_set.access_token, config.developer_token
            )
            for customer_id in customer_ids:
                try:
                    # login-customer-id = the customer itself, as a manager querying its children
                    rows = await self.search_stream(
                        client, customer_id, query, token_set.access_token, config.developer_token, customer_id
                    )
                except PrismError as e:
                    logger.warning("Google Ads customer %s not queryable, keeping placeholder: %s", customer_id, e)
                    if customer_id not in seen:
                        seen.add(customer_id)
                        accounts.append(
                            AdAccount(
                                id=customer_id,
                                name=f"Account {customer_id}",
                                platform=GOOGLE,
                                currency=DEFAULT_CURRENCY,
                                timezone=DEFAULT_TIMEZONE,
                                status="active",
                            )
                        )
                    continue

                for row in rows:
                    cc = _field(row, "customerClient", "customer_client")
                    if not isinstance(cc, dict):
                        continue
                    account_id = str(_field(cc, "id") or customer_id)
                    if account_id in seen:
                        continue
                    seen.add(account_id)
                    accounts.append(
                        AdAccount(
                            id=account_id,
                            name=_field(cc, "descriptiveName", "descriptive_name") or f"Account {account_id}",
                            platform=GOOGLE,
                            currency=_field(cc, "currencyCode", "currency_code") or DEFAULT_CURRENCY,
                            timezone=_field(cc, "timeZone", "time_zone") or DEFAULT_TIMEZONE,
                            status="active" if _field(cc, "status") == "ENABLED" else "disabled",
                            manager_customer_id=customer_id if account_id != customer_id else None,
                        )
                    )

        logger.info("Google Ads listed %d account(s) from %d accessible customer(s)", len(accounts), len(customer_ids))
        return accounts

    async def _fetch_account_info(
        self,
        client: httpx.AsyncClient,
        params: FetchParams,
        developer_token: str,
    ) -> AdAccount:
        rows = await self.search_stream(
            client,
            params.account_id,
            "SELECT customer.id, customer.descriptive_name, customer.currency_code, "
            "customer.time_zone, customer.status FROM customer LIMIT 1",
            params.token_set.access_token,
            developer_token,
            params.login_customer_id,
        )
        customer = _field(rows[0], "customer") if rows else None
        customer = customer if isinstance(customer, dict) else {}
        status = _field(customer, "status")
        return AdAccount(
            id=_clean_customer_id(params.account_id),
            name=_field(customer, "descriptiveName", "descriptive_name") or f"Google Ads {params.account_id}",
            platform=GOOGLE,
            currency=_field(customer, "currencyCode", "currency_code") or DEFAULT_CURRENCY,
            timezone=_field(customer, "timeZone", "time_zone") or DEFAULT_TIMEZONE,
            status="active" if status in (None, "ENABLED") else ("closed" if status == "CLOSED" else "disabled"),
            manager_customer_id=params.login_customer_id,
        )

    # ── Campaigns ─────────────────────────────────────────────────────

    async def _fetch_campaigns(
        self,
        client: httpx.AsyncClient,
        params: FetchParams,
        developer_token: str,
        date_range: DateRange,
    ) -> List[NormalizedCampaign]:
        query = (
            "SELECT campaign.id, campaign.name, campaign.status, campaign.bidding_strategy_type, "
            f"{METRIC_SELECT} "
            "FROM campaign "
            f"WHERE {_date_clause(date_range)} AND campaign.status != 'REMOVED' "
            "ORDER BY metrics.cost_micros DESC"
        )
        rows = await self.search_stream(
            client, params.account_id, query, params.token_set.access_token, developer_token, params.login_customer_id
        )
        campaigns: List[NormalizedCampaign] = []
        for row in rows:
            campaign = row.get("campaign") or {}
            campaigns.append(
                NormalizedCampaign(
                    id=str(_field(campaign, "id") or ""),
                    name=_field(campaign, "name") or "Unknown Campaign",
                    status=map_campaign_status(_field(campaign, "status")),
                    platform=GOOGLE,
                    objective=_field(campaign, "biddingStrategyType", "bidding_strategy_type"),
                    metrics=normalize_rows([row], date_range),
                )
            )
        # upstream already orders by cost; keep the guarantee when metrics tie or micros are rounded
        campaigns.sort(key=lambda c: c.metrics.spend, reverse=True)
        return campaigns

    async def fetch_campaigns(self, params: FetchParams) -> List[NormalizedCampaign]:
        config = GoogleAdsConfig.from_env()
        async with self._client() as client:
            return await self._fetch_campaigns(client, params, config.developer_token, params.date_range)

    # ── Time series & breakdowns ──────────────────────────────────────

    async def _fetch_time_series(
        self,
        client: httpx.AsyncClient,
        params: FetchParams,
        developer_token: str,
    ) -> List[NormalizedTimeSeries]:
        query = (
            f"SELECT segments.date, {METRIC_SELECT} "
            "FROM campaign "
            f"WHERE {_date_clause(params.date_range)} "
            "ORDER BY segments.date ASC"
        )
        rows = await self.search_stream(
            client, params.account_id, query, params.token_set.access_token, developer_token, params.login_customer_id
        )
        # rows are per campaign per day
        by_date = group_by(rows, lambda r: str(_field(r.get("segments") or {}, "date") or ""))
        series: List[NormalizedTimeSeries] = []
        for day, day_rows in by_date.items():
            try:
                start = datetime.strptime(day, "%Y-%m-%d")
                day_range = DateRange(start=start, end=start)
            except ValueError:
                day_range = params.date_range
            series.append(NormalizedTimeSeries(date=day, metrics=normalize_rows(day_rows, day_range)))
        return series

    async def _fetch_device_breakdown(
        self,
        client: httpx.AsyncClient,
        params: FetchParams,
        developer_token: str,
    ) -> NormalizedBreakdown:
        query = (
            f"SELECT segments.device, {METRIC_SELECT} "
            "FROM campaign "
            f"WHERE {_date_clause(params.date_range)}"
        )
        rows = await self.search_stream(
            client, params.account_id, query, params.token_set.access_token, developer_token, params.login_customer_id
        )
        by_device = group_by(rows, lambda r: str(_field(r.get("segments") or {}, "device") or "UNKNOWN"))
        return NormalizedBreakdown(
            dimension="device",
            segments=[
                BreakdownSegment(label=device_label(device), metrics=normalize_rows(device_rows, params.date_range))
                for device, device_rows in by_device.items()
            ],
        )

    async def _previous_period_metrics(
        self,
        client: httpx.AsyncClient,
        params: FetchParams,
        developer_token: str,
    ) -> Optional[NormalizedMetrics]:
        previous = params.date_range.previous()
        try:
            campaigns = await self._fetch_campaigns(client, params, developer_token, previous)
        except PrismError as e:
            logger.warning("Google Ads previous-period fetch failed for %s: %s", params.account_id, e)
            return None
        return aggregate_campaigns(campaigns, previous)

    # ── Summary ───────────────────────────────────────────────────────

    async def fetch_account_summary(self, params: MetricsParams) -> AccountSummary:
        config = GoogleAdsConfig.from_env()
        developer_token = config.developer_token

        async with self._client() as client:
            results = await asyncio.gather(
                self._fetch_account_info(client, params, developer_token),
                self._fetch_campaigns(client, params, developer_token, params.date_range),
                self._fetch_time_series(client, params, developer_token),
                self._fetch_device_breakdown(client, params, developer_token),
                self._previous_period_metrics(client, params, developer_token),
                return_exceptions=True,
            )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        account, campaigns, time_series, device_breakdown, previous = results

        return AccountSummary(
            account=account,
            metrics=aggregate_campaigns(campaigns, params.date_range),
            previous_period_metrics=previous,
            campaigns=campaigns,
            time_series=time_series,
            breakdowns=[device_breakdown],
        )
