"""
AdsConnector ABC: implement this to add a new data platform.

Connectors are stateless per call: nothing but the TokenSet passed into each
call is used for auth, and every public operation opens its own HTTP client.
Token refreshes and discovered accounts flow back through the data-access
collaborator, never cached here.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from prism.models import METRIC_KEYS, AdAccount, DateRange, NormalizedCampaign, Summary, TokenSet

DEFAULT_HTTP_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


@dataclass
class OAuthCallbackParams:
    code: str
    redirect_uri: str
    state: Optional[str] = None
    shop: Optional[str] = None              # Shopify only: mystore.myshopify.com


@dataclass
class FetchParams:
    account_id: str
    token_set: TokenSet
    date_range: DateRange
    login_customer_id: Optional[str] = None     # Google MCC routing header
    shop: Optional[str] = None                  # Shopify shop domain, defaults to account_id


@dataclass
class MetricsParams(FetchParams):
    level: str = "account"
    metrics: List[str] = field(default_factory=lambda: list(METRIC_KEYS))
    breakdowns: Optional[List[str]] = None


class AdsConnector(ABC):

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: httpx.Timeout = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self._transport = transport
        self._timeout = timeout

    @property
    @abstractmethod
    def platform(self) -> str:
        """Short identifier: 'meta', 'google', 'shopify'."""

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable name used in error messages, e.g. 'Meta'."""

    @abstractmethod
    def get_auth_url(self, redirect_uri: str, state: Optional[str] = None) -> str:
        """Build the OAuth authorization URL. Pure, no I/O."""

    @abstractmethod
    async def authorize(self, params: OAuthCallbackParams) -> TokenSet:
        """Exchange an OAuth authorization code for tokens."""

    @abstractmethod
    async def refresh_token(self, token_set: TokenSet) -> TokenSet:
        """Return a new TokenSet; raises TokenExpiredError when refresh is impossible."""

    @abstractmethod
    async def list_accounts(self, token_set: TokenSet) -> List[AdAccount]:
        """Enumerate every account visible to the token."""

    @abstractmethod
    async def fetch_campaigns(self, params: FetchParams) -> List[NormalizedCampaign]:
        """Return campaigns with metrics for the date range."""

    @abstractmethod
    async def fetch_account_summary(self, params: MetricsParams) -> Summary:
        """Return everything needed for deck generation for one account."""

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout)
