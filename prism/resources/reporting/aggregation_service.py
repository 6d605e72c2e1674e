"""
Multi-account fetch engine.

Fans out fetch_account_summary calls over a fixed pool of asyncio workers.
Every account settles to either a summary or a classified failure; one slow
or failing account never blocks or aborts the rest of the batch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from prism.config import EngineConfig
from prism.errors import FetchTimeoutError, PrismError, TokenExpiredError, classify_exception
from prism.models import PLATFORM_LABELS, DateRange, Summary
from prism.providers.ads.base import AdsConnector, MetricsParams
from prism.registry import ConnectorRegistry, registry as default_registry
from prism.resources.reporting.token_service import ensure_fresh_token
from prism.store import AccountRecord, AccountStore

logger = logging.getLogger(__name__)


@dataclass
class AccountFailure:
    account_id: str
    account_name: str
    platform: str
    error: PrismError

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "account_name": self.account_name,
            "platform": self.platform,
            **self.error.to_dict(),
        }


@dataclass
class FetchBatchResult:
    """Successes and failures, each in the original account order."""
    successes: List[Summary] = field(default_factory=list)
    failures: List[AccountFailure] = field(default_factory=list)


def _discard_result(task: "asyncio.Future") -> None:
    # Mark a late result/exception as retrieved so asyncio does not log it.
    if not task.cancelled():
        task.exception()


async def run_with_timeout(coro, timeout_s: float, platform_name: str):
    """
    Race ``coro`` against ``timeout_s``. On timeout the task is cancelled
    best-effort and FetchTimeoutError is raised immediately, without waiting
    for the cancellation to land.
    """
    task = asyncio.ensure_future(coro)
    done, _pending = await asyncio.wait({task}, timeout=timeout_s)
    if task in done:
        return task.result()
    task.cancel()
    task.add_done_callback(_discard_result)
    raise FetchTimeoutError(platform_name, timeout_s)


async def _fetch_one(
    record: AccountRecord,
    date_range: DateRange,
    connectors: ConnectorRegistry,
    timeout_s: float,
    store: Optional[AccountStore],
) -> Union[Summary, AccountFailure]:
    platform_name = PLATFORM_LABELS.get(record.platform, record.platform)
    try:
        connector: AdsConnector = connectors.get(record.platform)
        platform_name = connector.display_name

        async def _call() -> Summary:
            current = record
            if current.token_set is None:
                raise TokenExpiredError(connector.display_name)
            if store is not None:
                current = await ensure_fresh_token(connector, current, store)
            return await connector.fetch_account_summary(
                MetricsParams(
                    account_id=current.platform_id,
                    token_set=current.token_set,
                    date_range=date_range,
                    login_customer_id=current.login_customer_id,
                    shop=current.shop,
                )
            )

        return await run_with_timeout(_call(), timeout_s, platform_name)
    except Exception as e:
        error = classify_exception(e, platform_name)
        logger.warning(
            "Fetch failed for %s account %s (%s): %s [%s]",
            record.platform,
            record.platform_id,
            record.name,
            error.message,
            error.code,
        )
        return AccountFailure(
            account_id=record.platform_id,
            account_name=record.name,
            platform=record.platform,
            error=error,
        )


async def fetch_for_accounts(
    accounts: Sequence[AccountRecord],
    date_range: DateRange,
    concurrency_limit: Optional[int] = None,
    per_call_timeout: Optional[float] = None,
    connectors: Optional[ConnectorRegistry] = None,
    store: Optional[AccountStore] = None,
) -> FetchBatchResult:
    """
    Fetch an AccountSummary (or EcommerceSummary) for every account.

    Args:
        accounts: records from the data-access collaborator
        date_range: reporting window
        concurrency_limit: max connector calls in flight (default from EngineConfig, 4)
        per_call_timeout: seconds per account, covering all its sub-fetches (default 12)
        connectors: registry to resolve platforms (defaults to the module registry)
        store: when given, tokens close to expiry are refreshed and written back first

    Returns:
        FetchBatchResult; never raises for per-account failures.
    """
    engine = EngineConfig.from_env()
    limit = max(1, concurrency_limit or engine.concurrency)
    timeout_s = per_call_timeout if per_call_timeout is not None else engine.timeout_s
    connectors = connectors or default_registry

    total = len(accounts)
    results: List[Optional[Union[Summary, AccountFailure]]] = [None] * total
    cursor = 0

    async def worker() -> None:
        nonlocal cursor
        while cursor < total:
            # claim and advance with no await in between
            index = cursor
            cursor += 1
            results[index] = await _fetch_one(accounts[index], date_range, connectors, timeout_s, store)

    await asyncio.gather(*(worker() for _ in range(min(limit, total))))

    batch = FetchBatchResult()
    for result in results:
        if isinstance(result, AccountFailure):
            batch.failures.append(result)
        elif result is not None:
            batch.successes.append(result)

    logger.info(
        "Fetched %d account(s): %d succeeded, %d failed (concurrency=%d, timeout=%.1fs)",
        total,
        len(batch.successes),
        len(batch.failures),
        limit,
        timeout_s,
    )
    return batch
