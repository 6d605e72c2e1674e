#!/usr/bin/env python3
"""
Prism command line.

    python -m prism.cli report --accounts accounts.json --client acme \
        --start 2024-05-01 --end 2024-05-31 --output deck.json
    python -m prism.cli sync --accounts accounts.json --connection <id> [--client acme]
    python -m prism.cli auth-url meta --redirect-uri https://app.example.com/callback
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv

from prism.analysis.base import DeckAnalyzer
from prism.analysis.llm_analyzer import LLMDeckAnalyzer
from prism.analysis.noop import NoopAnalyzer
from prism.errors import PrismError
from prism.models import SHOPIFY, DateRange
from prism.oauth_state import create_oauth_state
from prism.registry import registry
from prism.resources.deck.composer import DeckConfig, compose_deck, default_slide_selections
from prism.resources.deck.renderer import JsonDeckRenderer
from prism.resources.reporting.rollup_service import fetch_client_rollup
from prism.resources.reporting.token_service import sync_accounts
from prism.secrets import load_secrets_from_secret_manager
from prism.store import JsonFileAccountStore

logger = logging.getLogger("prism.cli")


def _parse_day(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from e


def _end_of_day(day: datetime) -> datetime:
    return day.replace(hour=23, minute=59, second=59, microsecond=999000)


def _build_analyzer(use_llm: bool) -> DeckAnalyzer:
    if not use_llm:
        return NoopAnalyzer()
    return LLMDeckAnalyzer()


async def _report(args: argparse.Namespace) -> int:
    store = JsonFileAccountStore(args.accounts)
    date_range = DateRange(start=args.start, end=_end_of_day(args.end))

    rollup, batch = await fetch_client_rollup(
        args.client,
        store,
        date_range,
        concurrency_limit=args.concurrency,
        per_call_timeout=args.timeout,
    )
    for failure in batch.failures:
        logger.warning(
            "Account %s (%s) failed: [%s] %s",
            failure.account_name,
            failure.platform,
            failure.error.code,
            failure.error.message,
        )

    config = DeckConfig(
        client_name=args.client_name or args.client,
        report_title=args.title,
        slides=default_slide_selections(),
        output_format="json",
        date_range=date_range,
        user_context=args.context,
    )
    output = await compose_deck(
        config,
        batch.successes,
        JsonDeckRenderer(filename=args.output),
        _build_analyzer(args.llm),
    )
    with open(args.output, "wb") as f:
        f.write(output.buffer)

    logger.info(
        "Deck written to %s: %d account(s), %d failure(s), total spend %.2f, total revenue %.2f",
        args.output,
        len(batch.successes),
        len(batch.failures),
        rollup.totals.total_spend,
        rollup.totals.total_revenue,
    )
    if args.failures_json:
        print(json.dumps([f.to_dict() for f in batch.failures], indent=2))
    return 1 if batch.failures and not batch.successes else 0


async def _sync(args: argparse.Namespace) -> int:
    store = JsonFileAccountStore(args.accounts)
    connection = store.connections.get(args.connection)
    if connection is None:
        logger.error("Unknown connection '%s' in %s", args.connection, args.accounts)
        return 2
    connector = registry.get(connection.token_set.platform)
    result = await sync_accounts(
        connector,
        connection.token_set,
        store,
        connection.id,
        shop=connection.shop,
        client_id=args.client,
    )
    print(json.dumps({"synced": result.synced, "new_accounts": result.new_accounts}))
    return 0


def _auth_url(args: argparse.Namespace) -> int:
    connector = registry.get(args.platform)
    oauth_state = create_oauth_state(args.platform, {"shop": args.shop} if args.shop else None)
    if args.platform == SHOPIFY:
        if not args.shop:
            logger.error("--shop is required for Shopify")
            return 2
        url = connector.get_auth_url(args.redirect_uri, oauth_state.state, shop=args.shop)
    else:
        url = connector.get_auth_url(args.redirect_uri, oauth_state.state)
    print(url)
    print(f"Set cookie {oauth_state.cookie_name}={oauth_state.cookie_value} (max-age {oauth_state.max_age}s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prism", description="Ad-platform reporting and deck generation")
    sub = parser.add_subparsers(dest="command", required=True)

    report = sub.add_parser("report", help="Fetch a client's accounts and compose a JSON deck")
    report.add_argument("--accounts", required=True, help="Path to the JSON account store")
    report.add_argument("--client", required=True, help="Client id whose active accounts to report on")
    report.add_argument("--client-name", help="Display name on the title slide (defaults to --client)")
    report.add_argument("--title", default="Performance Report")
    report.add_argument("--start", required=True, type=_parse_day, help="YYYY-MM-DD")
    report.add_argument("--end", required=True, type=_parse_day, help="YYYY-MM-DD (inclusive)")
    report.add_argument("--output", default="deck.json")
    report.add_argument("--concurrency", type=int, default=None)
    report.add_argument("--timeout", type=float, default=None, help="Per-account timeout in seconds")
    report.add_argument("--context", default=None, help="Free-text client context for the analyzer")
    report.add_argument("--llm", action="store_true", help="Use the LLM analyzer for summary and commentary")
    report.add_argument("--failures-json", action="store_true", help="Print per-account failures as JSON")

    sync = sub.add_parser("sync", help="Re-discover and upsert the accounts of one connection")
    sync.add_argument("--accounts", required=True, help="Path to the JSON account store")
    sync.add_argument("--connection", required=True, help="Connection id in the store")
    sync.add_argument("--client", default=None, help="Assign discovered accounts to this client")

    auth = sub.add_parser("auth-url", help="Print an OAuth authorization URL with a signed state")
    auth.add_argument("platform", choices=["meta", "google", "shopify"])
    auth.add_argument("--redirect-uri", required=True)
    auth.add_argument("--shop", default=None, help="my-store.myshopify.com (Shopify only)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    load_secrets_from_secret_manager()

    args = build_parser().parse_args(argv)
    if args.command == "report" and args.end < args.start:
        logger.error("--end must not be before --start")
        return 2

    try:
        if args.command == "report":
            return asyncio.run(_report(args))
        if args.command == "sync":
            return asyncio.run(_sync(args))
        return _auth_url(args)
    except PrismError as e:
        logger.error("%s error [%s]: %s (recovery: %s)", e.platform, e.code, e.message, e.recovery_action)
        return 1


if __name__ == "__main__":
    sys.exit(main())
