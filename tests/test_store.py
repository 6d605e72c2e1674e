from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from prism.models import AdAccount, TokenSet
from prism.store import InMemoryAccountStore, JsonFileAccountStore


def _account(account_id="111", name="Client A", manager=None):
    return AdAccount(
        id=account_id,
        name=name,
        platform="google",
        currency="EUR",
        timezone="Europe/Paris",
        manager_customer_id=manager,
    )


def test_upsert_reports_creation_once():
    store = InMemoryAccountStore()
    conn = store.add_connection(TokenSet("t", "google"))
    assert store.upsert_account(conn, _account(), client_id="acme") is True
    assert store.upsert_account(conn, _account(name="Client A (renamed)", manager="999")) is False

    (record,) = store.list_active_accounts_for_client("acme")
    assert record.name == "Client A (renamed)"
    assert record.login_customer_id == "999"
    assert record.token_set.access_token == "t"


def test_inactive_and_other_clients_are_excluded():
    store = InMemoryAccountStore()
    conn = store.add_connection(TokenSet("t", "google"))
    store.upsert_account(conn, _account("1"), client_id="acme")
    store.upsert_account(conn, _account("2"), client_id="acme")
    store.upsert_account(conn, _account("3"), client_id="other")
    store.accounts[("google", "2")].is_active = False
    assert [r.platform_id for r in store.list_active_accounts_for_client("acme")] == ["1"]


def test_update_unknown_connection_raises():
    with pytest.raises(KeyError):
        InMemoryAccountStore().update_connection_tokens("missing", TokenSet("t", "meta"))


def test_json_store_persists_every_write(tmp_path):
    path = str(tmp_path / "accounts.json")
    store = JsonFileAccountStore(path)
    expires = datetime(2024, 7, 1, tzinfo=timezone.utc)
    conn = store.add_connection(TokenSet("t1", "google", scopes=["adwords"], refresh_token="r", expires_at=expires))
    store.upsert_account(conn, _account(manager="999"))
    store.assign_client("google", "111", "acme")
    store.update_connection_tokens(conn, TokenSet("t2", "google", refresh_token="r", expires_at=expires))

    raw = json.loads((tmp_path / "accounts.json").read_text())
    assert raw["connections"][conn]["access_token"] == "t2"
    assert raw["accounts"][0]["client_id"] == "acme"

    reloaded = JsonFileAccountStore(path)
    (record,) = reloaded.list_active_accounts_for_client("acme")
    assert record.token_set.access_token == "t2"
    assert record.token_set.expires_at == expires
    assert record.login_customer_id == "999"
    assert record.currency == "EUR"


def test_json_store_starts_empty(tmp_path):
    store = JsonFileAccountStore(str(tmp_path / "missing.json"))
    assert store.list_active_accounts_for_client("acme") == []
