"""
Shopify e-commerce connector.

Implements the same connector contract as the ad platforms, but a store has no
campaigns: its summary is an EcommerceSummary built from the orders API.
Offline access tokens never expire, so there is no refresh flow.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from prism.config import ShopifyConfig
from prism.errors import ApiError, DataValidationError, NetworkError, PrismError, classify_http_error
from prism.models import (
    SHOPIFY,
    AdAccount,
    DateRange,
    EcommerceSummary,
    NormalizedCampaign,
    NormalizedEcommerceMetrics,
    NormalizedEcommerceTimeSeries,
    NormalizedProduct,
    TokenSet,
)
from prism.providers.ads.base import AdsConnector, FetchParams, MetricsParams, OAuthCallbackParams
from prism.providers.ads.utils import error_message, group_by, require_list, to_float, to_int

logger = logging.getLogger(__name__)

SHOPIFY_API_VERSION = "2024-10"
SHOPIFY_SCOPES = ["read_orders", "read_products", "read_customers", "read_analytics"]
ORDERS_PAGE_LIMIT = 250
MAX_ORDER_PAGES = 20
TOP_PRODUCTS_LIMIT = 10

REFUNDED_STATUSES = frozenset({"refunded", "partially_refunded"})


def _order_day(order: Dict[str, Any]) -> str:
    return str(order.get("created_at") or "").split("T")[0]


def compute_metrics(orders: List[Dict[str, Any]], date_range: DateRange) -> NormalizedEcommerceMetrics:
    revenue = 0.0
    refund_amount = 0.0
    refunds = 0
    new_customers = 0
    returning_customers = 0

    for order in orders:
        revenue += to_float(order.get("total_price"), "total_price", "Shopify")
        if order.get("financial_status") in REFUNDED_STATUSES:
            refunds += 1
            refund_amount += to_float(order.get("total_refunds"), "total_refunds", "Shopify")
        customer = order.get("customer")
        if isinstance(customer, dict):
            # lifetime order count: 0 or 1 means this order is their first
            if to_int(customer.get("orders_count"), "orders_count", "Shopify") <= 1:
                new_customers += 1
            else:
                returning_customers += 1

    count = len(orders)
    return NormalizedEcommerceMetrics(
        revenue=revenue,
        orders=count,
        average_order_value=revenue / count if count > 0 else 0.0,
        refunds=refunds,
        refund_amount=refund_amount,
        new_customers=new_customers,
        returning_customers=returning_customers,
        date_range=date_range,
    )


def compute_top_products(orders: List[Dict[str, Any]], limit: int = TOP_PRODUCTS_LIMIT) -> List[NormalizedProduct]:
    products: Dict[str, Dict[str, Any]] = {}
    for order in orders:
        for item in order.get("line_items") or []:
            if not isinstance(item, dict):
                continue
            product_id = str(item.get("product_id") or "")
            quantity = to_int(item.get("quantity"), "quantity", "Shopify")
            entry = products.setdefault(product_id, {"name": item.get("title") or "", "revenue": 0.0, "units": 0})
            entry["revenue"] += to_float(item.get("price"), "price", "Shopify") * quantity
            entry["units"] += quantity

    ranked = sorted(products.items(), key=lambda kv: kv[1]["revenue"], reverse=True)[:limit]
    return [
        NormalizedProduct(id=pid, name=data["name"], revenue=data["revenue"], units_sold=data["units"])
        for pid, data in ranked
    ]


def compute_time_series(orders: List[Dict[str, Any]], date_range: DateRange) -> List[NormalizedEcommerceTimeSeries]:
    """One entry per calendar day in range; days without orders get zero metrics."""
    by_day = group_by(orders, _order_day)
    series: List[NormalizedEcommerceTimeSeries] = []
    day = date_range.start.date()
    last = date_range.end.date()
    while day <= last:
        key = day.isoformat()
        start = datetime(day.year, day.month, day.day)
        series.append(
            NormalizedEcommerceTimeSeries(
                date=key,
                metrics=compute_metrics(by_day.get(key, []), DateRange(start=start, end=start)),
            )
        )
        day += timedelta(days=1)
    return series


def _utc_iso(dt: datetime) -> str:
    """Naive datetimes are UTC; Shopify gets an explicit offset either way."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _require_shop(shop: Optional[str]) -> str:
    shop = (shop or "").strip().lower()
    shop = shop.replace("https://", "").replace("http://", "").rstrip("/")
    if not shop:
        raise ApiError("Shopify", "a shop domain (e.g. mystore.myshopify.com) is required")
    return shop


class ShopifyConnector(AdsConnector):
    platform = SHOPIFY
    display_name = "Shopify"

    # ── HTTP ──────────────────────────────────────────────────────────

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.error("Shopify network error: url=%s error=%s", url.split("?")[0], e)
            raise NetworkError(self.display_name) from e

        if resp.status_code >= 400:
            logger.error(
                "Shopify API error: status=%s path=%s body=%s",
                resp.status_code,
                url.split("?")[0],
                (resp.text or "")[:2000],
            )
            try:
                body = resp.json()
            except ValueError:
                body = {}
            raise classify_http_error(
                self.display_name,
                resp.status_code,
                headers=resp.headers,
                message=error_message(body) or f"HTTP {resp.status_code}",
            )
        return resp

    async def _get(self, client: httpx.AsyncClient, url: str, access_token: str) -> httpx.Response:
        return await self._send(
            client,
            "GET",
            url,
            headers={"X-Shopify-Access-Token": access_token, "Content-Type": "application/json"},
        )

    @staticmethod
    def _json(resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise DataValidationError("response is not JSON", platform="Shopify") from e
        if not isinstance(data, dict):
            raise DataValidationError("expected a JSON object", platform="Shopify")
        return data

    # ── OAuth ─────────────────────────────────────────────────────────

    def get_auth_url(self, redirect_uri: str, state: Optional[str] = None, shop: Optional[str] = None) -> str:
        config = ShopifyConfig.from_env()
        params = {
            "client_id": config.client_id,
            "scope": ",".join(SHOPIFY_SCOPES),
            "redirect_uri": redirect_uri,
        }
        if state:
            params["state"] = state
        return f"https://{_require_shop(shop)}/admin/oauth/authorize?{urlencode(params)}"

    async def authorize(self, params: OAuthCallbackParams) -> TokenSet:
        config = ShopifyConfig.from_env()
        shop = _require_shop(params.shop)
        async with self._client() as client:
            resp = await self._send(
                client,
                "POST",
                f"https://{shop}/admin/oauth/access_token",
                json={"client_id": config.client_id, "client_secret": config.client_secret, "code": params.code},
            )
        data = self._json(resp)
        if not data.get("access_token"):
            raise DataValidationError("token response has no access_token", platform=self.display_name)
        logger.info("Shopify authorization complete for %s", shop)
        # offline access tokens don't expire
        return TokenSet(
            access_token=data["access_token"],
            scopes=[s for s in (data.get("scope") or "").split(",") if s],
            platform=SHOPIFY,
        )

    async def refresh_token(self, token_set: TokenSet) -> TokenSet:
        raise ApiError(self.display_name, "offline access tokens do not expire, so refresh does not apply")

    # ── Shop ──────────────────────────────────────────────────────────

    async def _fetch_shop_info(self, client: httpx.AsyncClient, shop: str, access_token: str) -> AdAccount:
        resp = await self._get(client, f"https://{shop}/admin/api/{SHOPIFY_API_VERSION}/shop.json", access_token)
        info = self._json(resp).get("shop")
        if not isinstance(info, dict):
            raise DataValidationError("shop.json has no shop object", platform=self.display_name)
        return AdAccount(
            id=str(info.get("id") or ""),
            name=info.get("name") or shop,
            platform=SHOPIFY,
            currency=info.get("currency") or "USD",
            timezone=info.get("iana_timezone") or "UTC",
            status="active",
        )

    async def get_shop_info(self, shop: str, token_set: TokenSet) -> AdAccount:
        async with self._client() as client:
            return await self._fetch_shop_info(client, _require_shop(shop), token_set.access_token)

    async def list_accounts(self, token_set: TokenSet, shop: Optional[str] = None) -> List[AdAccount]:
        """A token is bound to exactly one store."""
        return [await self.get_shop_info(_require_shop(shop), token_set)]

    async def fetch_campaigns(self, params: FetchParams) -> List[NormalizedCampaign]:
        return []

    # ── Orders ────────────────────────────────────────────────────────

    async def _fetch_orders(
        self,
        client: httpx.AsyncClient,
        shop: str,
        access_token: str,
        date_range: DateRange,
    ) -> List[Dict[str, Any]]:
        """Page through orders via the Link rel="next" header, up to MAX_ORDER_PAGES."""
        query = urlencode(
            {
                "status": "any",
                "created_at_min": _utc_iso(date_range.start),
                "created_at_max": _utc_iso(date_range.end),
                "limit": ORDERS_PAGE_LIMIT,
            }
        )
        url: Optional[str] = f"https://{shop}/admin/api/{SHOPIFY_API_VERSION}/orders.json?{query}"
        orders: List[Dict[str, Any]] = []
        pages = 0
        while url:
            resp = await self._get(client, url, access_token)
            orders.extend(require_list(self._json(resp), "orders", self.display_name))
            pages += 1
            url = resp.links.get("next", {}).get("url")
            if url and pages >= MAX_ORDER_PAGES:
                logger.warning(
                    "Shopify %s: stopping after %d pages (%d orders); totals may undercount",
                    shop,
                    pages,
                    len(orders),
                )
                break
        return orders

    async def _previous_period_metrics(
        self,
        client: httpx.AsyncClient,
        shop: str,
        access_token: str,
        date_range: DateRange,
    ) -> Optional[NormalizedEcommerceMetrics]:
        previous = date_range.previous()
        try:
            orders = await self._fetch_orders(client, shop, access_token, previous)
            return compute_metrics(orders, previous)
        except PrismError as e:
            logger.warning("Shopify previous-period fetch failed for %s: %s", shop, e)
            return None

    async def fetch_account_summary(self, params: MetricsParams) -> EcommerceSummary:
        shop = _require_shop(params.shop or params.account_id)
        token = params.token_set.access_token
        date_range = params.date_range

        async with self._client() as client:
            results = await asyncio.gather(
                self._fetch_orders(client, shop, token, date_range),
                self._fetch_shop_info(client, shop, token),
                self._previous_period_metrics(client, shop, token, date_range),
                return_exceptions=True,
            )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        orders, account, previous = results

        logger.info("Shopify %s: %d order(s) in range", shop, len(orders))
        return EcommerceSummary(
            account=account,
            metrics=compute_metrics(orders, date_range),
            previous_period_metrics=previous,
            top_products=compute_top_products(orders),
            time_series=compute_time_series(orders, date_range),
        )
