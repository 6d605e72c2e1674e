from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

from prism.cli import main
from prism.models import TokenSet
from prism.oauth_state import verify_oauth_state
from prism.store import JsonFileAccountStore


def test_auth_url_carries_a_verifiable_state(platform_env, capsys):
    assert main(["auth-url", "meta", "--redirect-uri", "https://app.example.com/callback"]) == 0
    url, cookie_line = capsys.readouterr().out.strip().splitlines()

    query = parse_qs(urlparse(url).query)
    assert query["client_id"] == ["meta-app"]
    cookie = cookie_line.split()[2]
    assert verify_oauth_state("meta", query["state"][0], cookie) == {}


def test_shopify_auth_url_requires_shop(platform_env):
    assert main(["auth-url", "shopify", "--redirect-uri", "https://app.example.com/callback"]) == 2


def test_report_for_client_without_accounts(platform_env, tmp_path):
    output = tmp_path / "deck.json"
    code = main([
        "report",
        "--accounts", str(tmp_path / "accounts.json"),
        "--client", "acme",
        "--client-name", "Acme Co",
        "--start", "2024-05-01",
        "--end", "2024-05-31",
        "--output", str(output),
    ])
    assert code == 0
    deck = json.loads(output.read_text())
    assert [s["type"] for s in deck["slides"]] == ["title"]
    assert deck["slides"][0]["client_name"] == "Acme Co"


def test_report_rejects_inverted_range(tmp_path):
    code = main([
        "report",
        "--accounts", str(tmp_path / "accounts.json"),
        "--client", "acme",
        "--start", "2024-05-31",
        "--end", "2024-05-01",
    ])
    assert code == 2


def test_sync_unknown_connection(tmp_path):
    assert main(["sync", "--accounts", str(tmp_path / "accounts.json"), "--connection", "nope"]) == 2


def test_sync_shopify_connection_without_shop_fails_cleanly(platform_env, tmp_path):
    path = str(tmp_path / "accounts.json")
    store = JsonFileAccountStore(path)
    store.add_connection(TokenSet("shpat_1", "shopify"), connection_id="shop-conn")

    assert main(["sync", "--accounts", path, "--connection", "shop-conn"]) == 1
