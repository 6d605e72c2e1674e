"""
Data-access collaborator for account and credential records.

The core never touches a database directly. It reads active accounts for a
client and writes back discovered accounts and refreshed tokens through the
AccountStore protocol. Two implementations ship here:

- InMemoryAccountStore: for tests and embedding
- JsonFileAccountStore: a single JSON document on disk, used by the CLI
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from prism.models import AdAccount, TokenSet

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """One OAuth grant (one platform login or one Shopify store)."""
    id: str
    token_set: TokenSet
    shop: Optional[str] = None


@dataclass
class AccountRecord:
    id: str
    platform: str
    platform_id: str
    name: str
    connection_id: str
    token_set: Optional[TokenSet] = None
    client_id: Optional[str] = None
    is_active: bool = True
    currency: str = "USD"
    timezone: str = "UTC"
    status: str = "active"
    login_customer_id: Optional[str] = None
    shop: Optional[str] = None


class AccountStore(Protocol):

    def list_active_accounts_for_client(self, client_id: str) -> List[AccountRecord]:
        ...

    def upsert_account(self, connection_id: str, account: AdAccount, client_id: Optional[str] = None) -> bool:
        """Insert or update by (platform, account.id). Returns True when a new record was created."""
        ...

    def update_connection_tokens(self, connection_id: str, token_set: TokenSet) -> None:
        ...


class InMemoryAccountStore:

    def __init__(self) -> None:
        self.connections: Dict[str, Connection] = {}
        self.accounts: Dict[Tuple[str, str], AccountRecord] = {}

    def add_connection(self, token_set: TokenSet, shop: Optional[str] = None, connection_id: Optional[str] = None) -> str:
        connection_id = connection_id or uuid.uuid4().hex
        self.connections[connection_id] = Connection(id=connection_id, token_set=token_set, shop=shop)
        return connection_id

    def assign_client(self, platform: str, platform_id: str, client_id: Optional[str]) -> None:
        self.accounts[(platform, platform_id)].client_id = client_id

    def _resolve(self, record: AccountRecord) -> AccountRecord:
        connection = self.connections.get(record.connection_id)
        if connection is None:
            return record
        return replace(record, token_set=connection.token_set, shop=record.shop or connection.shop)

    def list_active_accounts_for_client(self, client_id: str) -> List[AccountRecord]:
        return [
            self._resolve(record)
            for record in self.accounts.values()
            if record.client_id == client_id and record.is_active
        ]

    def upsert_account(self, connection_id: str, account: AdAccount, client_id: Optional[str] = None) -> bool:
        key = (account.platform, account.id)
        existing = self.accounts.get(key)
        if existing is not None:
            existing.name = account.name
            existing.currency = account.currency
            existing.timezone = account.timezone
            existing.status = account.status
            existing.connection_id = connection_id
            existing.login_customer_id = account.manager_customer_id
            if client_id is not None:
                existing.client_id = client_id
            return False

        self.accounts[key] = AccountRecord(
            id=uuid.uuid4().hex,
            platform=account.platform,
            platform_id=account.id,
            name=account.name,
            connection_id=connection_id,
            client_id=client_id,
            currency=account.currency,
            timezone=account.timezone,
            status=account.status,
            login_customer_id=account.manager_customer_id,
        )
        return True

    def update_connection_tokens(self, connection_id: str, token_set: TokenSet) -> None:
        connection = self.connections.get(connection_id)
        if connection is None:
            raise KeyError(f"Unknown connection '{connection_id}'")
        connection.token_set = token_set


# ── JSON file ────────────────────────────────────────────────────────────────


def _token_to_dict(token_set: TokenSet) -> Dict[str, Any]:
    return {
        "platform": token_set.platform,
        "access_token": token_set.access_token,
        "refresh_token": token_set.refresh_token,
        "expires_at": token_set.expires_at.isoformat() if token_set.expires_at else None,
        "scopes": list(token_set.scopes),
    }


def _token_from_dict(data: Dict[str, Any]) -> TokenSet:
    expires_at = data.get("expires_at")
    return TokenSet(
        access_token=data["access_token"],
        platform=data["platform"],
        refresh_token=data.get("refresh_token"),
        expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        scopes=list(data.get("scopes") or []),
    )


_RECORD_FIELDS = (
    "id",
    "platform",
    "platform_id",
    "name",
    "connection_id",
    "client_id",
    "is_active",
    "currency",
    "timezone",
    "status",
    "login_customer_id",
    "shop",
)


class JsonFileAccountStore(InMemoryAccountStore):
    """
    InMemoryAccountStore persisted to one JSON file after every write.

    File layout:
        {
          "connections": {"<id>": {"platform": ..., "access_token": ..., "shop": ...}},
          "accounts": [{"id": ..., "platform": ..., "platform_id": ..., "client_id": ...}]
        }
    """

    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = path
        if os.path.exists(path):
            self._load()
        else:
            logger.info("Account store %s does not exist yet; starting empty", path)

    def _load(self) -> None:
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        for connection_id, raw in (data.get("connections") or {}).items():
            self.connections[connection_id] = Connection(
                id=connection_id,
                token_set=_token_from_dict(raw),
                shop=raw.get("shop"),
            )
        for raw in data.get("accounts") or []:
            record = AccountRecord(**{k: raw[k] for k in _RECORD_FIELDS if k in raw})
            self.accounts[(record.platform, record.platform_id)] = record
        logger.info(
            "Loaded account store %s: %d connection(s), %d account(s)",
            self.path,
            len(self.connections),
            len(self.accounts),
        )

    def save(self) -> None:
        data = {
            "connections": {
                cid: dict(_token_to_dict(c.token_set), shop=c.shop)
                for cid, c in self.connections.items()
            },
            "accounts": [{k: getattr(r, k) for k in _RECORD_FIELDS} for r in self.accounts.values()],
        }
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    def add_connection(self, token_set: TokenSet, shop: Optional[str] = None, connection_id: Optional[str] = None) -> str:
        connection_id = super().add_connection(token_set, shop=shop, connection_id=connection_id)
        self.save()
        return connection_id

    def upsert_account(self, connection_id: str, account: AdAccount, client_id: Optional[str] = None) -> bool:
        created = super().upsert_account(connection_id, account, client_id=client_id)
        self.save()
        return created

    def update_connection_tokens(self, connection_id: str, token_set: TokenSet) -> None:
        super().update_connection_tokens(connection_id, token_set)
        self.save()

    def assign_client(self, platform: str, platform_id: str, client_id: Optional[str]) -> None:
        super().assign_client(platform, platform_id, client_id)
        self.save()
