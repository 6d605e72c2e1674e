"""
Token service: refresh connection tokens before they expire and re-discover
accounts for a connection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from prism.errors import call_with_retry
from prism.models import SHOPIFY, TokenSet
from prism.providers.ads.base import AdsConnector
from prism.store import AccountRecord, AccountStore

logger = logging.getLogger(__name__)

# Refresh 5 minutes before actual expiry
REFRESH_BUFFER = timedelta(minutes=5)


def _make_aware(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (UTC). Stores may return naive datetimes."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def token_needs_refresh(token_set: TokenSet, now: Optional[datetime] = None) -> bool:
    if token_set.expires_at is None:
        # Shopify offline tokens never expire
        return False
    now = now or datetime.now(timezone.utc)
    return _make_aware(now) >= _make_aware(token_set.expires_at) - REFRESH_BUFFER


async def ensure_fresh_token(
    connector: AdsConnector,
    record: AccountRecord,
    store: AccountStore,
    now: Optional[datetime] = None,
) -> AccountRecord:
    """
    Return the record with a usable token, refreshing and persisting it via
    ``store.update_connection_tokens`` when it expires within REFRESH_BUFFER.

    TokenExpiredError from the connector (e.g. Google without a refresh token)
    propagates: the user has to reconnect.
    """
    if record.token_set is None or not token_needs_refresh(record.token_set, now):
        return record

    logger.info("Token for %s connection %s is expiring, refreshing...", record.platform, record.connection_id)
    token_set = await connector.refresh_token(record.token_set)
    store.update_connection_tokens(record.connection_id, token_set)
    logger.info("Token refreshed for %s connection %s, expires at %s", record.platform, record.connection_id, token_set.expires_at)
    return replace(record, token_set=token_set)


@dataclass
class SyncResult:
    synced: int
    new_accounts: int


async def sync_accounts(
    connector: AdsConnector,
    token_set: TokenSet,
    store: AccountStore,
    connection_id: str,
    shop: Optional[str] = None,
    client_id: Optional[str] = None,
) -> SyncResult:
    """
    List every account visible to the connection and upsert each one.
    Rate-limited and network failures during discovery are retried.
    """
    if connector.platform == SHOPIFY:
        accounts = await call_with_retry(lambda: connector.list_accounts(token_set, shop=shop))
    else:
        accounts = await call_with_retry(lambda: connector.list_accounts(token_set))

    new_count = 0
    for account in accounts:
        if store.upsert_account(connection_id, account, client_id=client_id):
            new_count += 1

    logger.info(
        "Synced %d %s account(s) for connection %s (%d new)",
        len(accounts),
        connector.platform,
        connection_id,
        new_count,
    )
    return SyncResult(synced=len(accounts), new_accounts=new_count)
