"""Meta Ads connector against a mocked Graph API."""

from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from prism.errors import AccountAccessError, ApiError, DataValidationError, TokenExpiredError
from prism.models import AccountSummary
from prism.providers.ads.base import FetchParams, MetricsParams, OAuthCallbackParams
from prism.providers.ads.meta import (
    MetaAdsConnector,
    extract_conversions,
    map_account_status,
    map_campaign_status,
)

from conftest import json_response, recording_transport, token

ACCOUNT_ID = "123"

CAMPAIGN_ROWS = [
    {
        "campaign_id": "c1",
        "campaign_name": "Prospecting",
        "objective": "OUTCOME_SALES",
        "spend": "100.00",
        "impressions": "10000",
        "clicks": "200",
        "actions": [
            {"action_type": "link_click", "value": "200"},
            {"action_type": "purchase", "value": "6"},
            {"action_type": "omni_purchase", "value": "6"},
        ],
        "action_values": [{"action_type": "purchase", "value": "300.00"}],
    },
    {
        "campaign_id": "c2",
        "campaign_name": "Dormant",
        "spend": "0",
        "impressions": "0",
        "clicks": "0",
    },
    {
        "campaign_id": "c3",
        "campaign_name": "Retargeting",
        "spend": "50.00",
        "impressions": "2000",
        "clicks": "40",
        "actions": [{"action_type": "lead", "value": "2"}],
        "action_values": [{"action_type": "omni_purchase", "value": "25.00"}],
    },
]

STATUSES = [{"id": "c1", "status": "ACTIVE"}, {"id": "c2", "status": "PAUSED"}]


def graph_handler(previous_status: int = 200, campaign_pages: int = 1):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = request.url.params

        if path.endswith(f"/act_{ACCOUNT_ID}"):
            return json_response(
                {"id": f"act_{ACCOUNT_ID}", "name": "Acme Meta", "currency": "EUR",
                 "timezone_name": "Europe/Berlin", "account_status": 1}
            )
        if path.endswith("/campaigns"):
            return json_response({"data": STATUSES})
        if path.endswith("/insights"):
            if params.get("after") == "page2":
                return json_response({"data": CAMPAIGN_ROWS[2:]})
            if params.get("level") == "campaign":
                since = json.loads(params["time_range"])["since"]
                if since != "2024-05-01":
                    if previous_status != 200:
                        return json_response({"error": {"message": "boom", "code": 1}}, previous_status)
                    return json_response({"data": [{"campaign_id": "c1", "spend": "75", "impressions": "100"}]})
                if campaign_pages == 2:
                    next_url = f"https://graph.facebook.com/v21.0/act_{ACCOUNT_ID}/insights?after=page2&access_token=x"
                    return json_response({"data": CAMPAIGN_ROWS[:2], "paging": {"next": next_url}})
                return json_response({"data": CAMPAIGN_ROWS})
            if params.get("time_increment") == "1":
                return json_response(
                    {"data": [
                        {"date_start": "2024-05-01", "spend": "60", "impressions": "5000", "clicks": "100"},
                        {"date_start": "2024-05-02", "spend": "90", "impressions": "7000", "clicks": "140"},
                    ]}
                )
            if params.get("breakdowns") == "age,gender":
                return json_response(
                    {"data": [
                        {"age": "25-34", "gender": "female", "spend": "70"},
                        {"age": "25-34", "gender": "male", "spend": "30"},
                        {"age": "35-44", "gender": "female", "spend": "50"},
                    ]}
                )
            if params.get("breakdowns") == "device_platform":
                return json_response({"data": [{"device_platform": "mobile_app", "spend": "150"}]})
        return json_response({"error": {"message": f"unexpected {path}"}}, 404)

    return handler


def test_first_matching_action_wins_without_summing():
    actions = [
        {"action_type": "link_click", "value": "99"},
        {"action_type": "omni_purchase", "value": "4"},
        {"action_type": "purchase", "value": "4"},
    ]
    assert extract_conversions(actions) == 4.0
    assert extract_conversions(None) == 0.0


def test_status_maps():
    assert map_campaign_status("ACTIVE") == "active"
    assert map_campaign_status("PAUSED") == "paused"
    assert map_campaign_status("ARCHIVED") == "archived"
    assert map_campaign_status("DELETED") == "completed"
    assert map_campaign_status(None) == "completed"
    assert map_account_status(1) == "active"
    assert map_account_status(101) == "closed"
    assert map_account_status(2) == "disabled"


@pytest.mark.anyio
async def test_account_summary_totals(platform_env, may_2024):
    transport, _ = recording_transport(graph_handler())
    connector = MetaAdsConnector(transport=transport)

    summary = await connector.fetch_account_summary(
        MetricsParams(account_id=ACCOUNT_ID, token_set=token("meta"), date_range=may_2024)
    )

    assert isinstance(summary, AccountSummary)
    assert summary.metrics.spend == pytest.approx(150.0)
    assert summary.metrics.revenue == pytest.approx(325.0)
    assert summary.metrics.roas == pytest.approx(2.1667, abs=1e-4)
    assert summary.metrics.conversions == pytest.approx(8.0)

    assert summary.account.name == "Acme Meta"
    assert summary.account.currency == "EUR"
    assert summary.account.id == ACCOUNT_ID

    assert [c.name for c in summary.campaigns] == ["Prospecting", "Dormant", "Retargeting"]
    assert [c.status for c in summary.campaigns] == ["active", "paused", "completed"]

    assert [ts.date for ts in summary.time_series] == ["2024-05-01", "2024-05-02"]
    dims = {b.dimension: b for b in summary.breakdowns}
    assert [s.label for s in dims["age"].segments] == ["25-34", "35-44"]
    assert dims["age"].segments[0].metrics.spend == pytest.approx(100.0)
    assert [s.label for s in dims["gender"].segments] == ["female", "male"]
    assert dims["device"].segments[0].label == "mobile_app"

    assert summary.previous_period_metrics is not None
    assert summary.previous_period_metrics.spend == pytest.approx(75.0)


@pytest.mark.anyio
async def test_summary_is_deterministic(platform_env, may_2024):
    connector = MetaAdsConnector(transport=httpx.MockTransport(graph_handler()))
    params = MetricsParams(account_id=ACCOUNT_ID, token_set=token("meta"), date_range=may_2024)
    first = await connector.fetch_account_summary(params)
    second = await connector.fetch_account_summary(params)
    assert first == second


@pytest.mark.anyio
async def test_previous_period_failure_is_tolerated(platform_env, may_2024):
    connector = MetaAdsConnector(transport=httpx.MockTransport(graph_handler(previous_status=500)))
    summary = await connector.fetch_account_summary(
        MetricsParams(account_id=ACCOUNT_ID, token_set=token("meta"), date_range=may_2024)
    )
    assert summary.previous_period_metrics is None
    assert summary.metrics.spend == pytest.approx(150.0)


@pytest.mark.anyio
async def test_campaigns_follow_paging_next(platform_env, may_2024):
    transport, seen = recording_transport(graph_handler(campaign_pages=2))
    connector = MetaAdsConnector(transport=transport)
    campaigns = await connector.fetch_campaigns(
        FetchParams(account_id=f"act_{ACCOUNT_ID}", token_set=token("meta"), date_range=may_2024)
    )
    assert [c.id for c in campaigns] == ["c1", "c2", "c3"]
    assert any(r.url.params.get("after") == "page2" for r in seen)


@pytest.mark.anyio
async def test_invalid_token_code_raises_token_expired(platform_env, may_2024):
    def handler(request):
        return json_response({"error": {"message": "Session expired", "code": 190}}, 400)

    connector = MetaAdsConnector(transport=httpx.MockTransport(handler))
    with pytest.raises(TokenExpiredError):
        await connector.fetch_campaigns(
            FetchParams(account_id=ACCOUNT_ID, token_set=token("meta"), date_range=may_2024)
        )


@pytest.mark.anyio
async def test_permission_error_raises_account_access(platform_env):
    def handler(request):
        return json_response({"error": {"message": "no", "code": 200}}, 400)

    connector = MetaAdsConnector(transport=httpx.MockTransport(handler))
    with pytest.raises(AccountAccessError):
        await connector.list_accounts(token("meta"))


@pytest.mark.anyio
async def test_authorize_exchanges_for_long_lived_token(platform_env):
    def handler(request):
        params = request.url.params
        if params.get("grant_type") == "fb_exchange_token":
            assert params["fb_exchange_token"] == "short"
            return json_response({"access_token": "long", "expires_in": 5_184_000})
        assert params["code"] == "the-code"
        return json_response({"access_token": "short", "expires_in": 3600})

    connector = MetaAdsConnector(transport=httpx.MockTransport(handler))
    token_set = await connector.authorize(OAuthCallbackParams(code="the-code", redirect_uri="https://x/cb"))
    assert token_set.access_token == "long"
    assert token_set.platform == "meta"
    assert token_set.expires_at is not None


def test_auth_url_carries_state(platform_env):
    url = MetaAdsConnector().get_auth_url("https://app.example.com/cb", state="abc")
    query = parse_qs(urlparse(url).query)
    assert query["client_id"] == ["meta-app"]
    assert query["state"] == ["abc"]
    assert query["scope"] == ["ads_read"]


@pytest.mark.anyio
async def test_list_accounts_strips_act_prefix(platform_env):
    def handler(request):
        return json_response(
            {"data": [
                {"id": "act_1", "name": "One", "currency": "USD", "timezone_name": "UTC", "account_status": 1},
                {"id": "act_2", "name": "Two", "account_status": 101},
            ]}
        )

    connector = MetaAdsConnector(transport=httpx.MockTransport(handler))
    accounts = await connector.list_accounts(token("meta"))
    assert [(a.id, a.status) for a in accounts] == [("1", "active"), ("2", "closed")]


@pytest.mark.anyio
async def test_failed_time_series_fails_the_whole_summary(platform_env, may_2024):
    base = graph_handler()

    def handler(request):
        if request.url.params.get("time_increment") == "1":
            return json_response({"error": {"message": "Service temporarily unavailable"}}, 500)
        return base(request)

    connector = MetaAdsConnector(transport=httpx.MockTransport(handler))
    with pytest.raises(ApiError) as excinfo:
        await connector.fetch_account_summary(
            MetricsParams(account_id=ACCOUNT_ID, token_set=token("meta"), date_range=may_2024)
        )
    assert excinfo.value.code == "API_ERROR"
    assert excinfo.value.status_code == 500


@pytest.mark.anyio
async def test_missing_account_id_is_classified(platform_env, may_2024):
    with pytest.raises(ApiError):
        await MetaAdsConnector().fetch_campaigns(
            FetchParams(account_id="act_", token_set=token("meta"), date_range=may_2024)
        )


@pytest.mark.anyio
async def test_non_numeric_expiry_is_a_validation_error(platform_env):
    def handler(request):
        if request.url.params.get("grant_type") == "fb_exchange_token":
            return json_response({"access_token": "long", "expires_in": "soon"})
        return json_response({"access_token": "short"})

    connector = MetaAdsConnector(transport=httpx.MockTransport(handler))
    with pytest.raises(DataValidationError):
        await connector.authorize(OAuthCallbackParams(code="the-code", redirect_uri="https://x/cb"))
