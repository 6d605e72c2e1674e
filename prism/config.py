"""
Platform credentials and engine defaults, read from the environment.

Configs are read lazily so a missing credential only fails the platform that
needs it, and it fails as an ApiError like any other upstream problem.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from prism.errors import ApiError


def _env(name: str) -> str:
    return (os.environ.get(name) or "").strip()


@dataclass(frozen=True)
class MetaConfig:
    app_id: str
    app_secret: str

    @classmethod
    def from_env(cls) -> "MetaConfig":
        app_id = _env("META_APP_ID")
        app_secret = _env("META_APP_SECRET")
        if not app_id or not app_secret:
            raise ApiError("Meta", "META_APP_ID and META_APP_SECRET must be set")
        return cls(app_id=app_id, app_secret=app_secret)


@dataclass(frozen=True)
class GoogleAdsConfig:
    client_id: str
    client_secret: str
    developer_token: str

    @classmethod
    def from_env(cls) -> "GoogleAdsConfig":
        client_id = _env("GOOGLE_ADS_CLIENT_ID")
        client_secret = _env("GOOGLE_ADS_CLIENT_SECRET")
        developer_token = _env("GOOGLE_ADS_DEVELOPER_TOKEN")
        if not client_id or not client_secret or not developer_token:
            raise ApiError(
                "Google Ads",
                "GOOGLE_ADS_CLIENT_ID, GOOGLE_ADS_CLIENT_SECRET, and GOOGLE_ADS_DEVELOPER_TOKEN must be set",
            )
        return cls(client_id=client_id, client_secret=client_secret, developer_token=developer_token)


@dataclass(frozen=True)
class ShopifyConfig:
    client_id: str
    client_secret: str

    @classmethod
    def from_env(cls) -> "ShopifyConfig":
        client_id = _env("SHOPIFY_CLIENT_ID")
        client_secret = _env("SHOPIFY_CLIENT_SECRET")
        if not client_id or not client_secret:
            raise ApiError("Shopify", "SHOPIFY_CLIENT_ID and SHOPIFY_CLIENT_SECRET must be set")
        return cls(client_id=client_id, client_secret=client_secret)


@dataclass(frozen=True)
class EngineConfig:
    concurrency: int = 4
    timeout_s: float = 12.0

    @classmethod
    def from_env(cls) -> "EngineConfig":
        concurrency = _env("PRISM_FETCH_CONCURRENCY")
        timeout_s = _env("PRISM_FETCH_TIMEOUT_SECONDS")
        try:
            return cls(
                concurrency=max(1, int(concurrency)) if concurrency else cls.concurrency,
                timeout_s=float(timeout_s) if timeout_s else cls.timeout_s,
            )
        except ValueError as e:
            raise ValueError(
                f"PRISM_FETCH_CONCURRENCY must be an integer and PRISM_FETCH_TIMEOUT_SECONDS a number: {e}"
            ) from e


def oauth_state_secret() -> str:
    secret = _env("PRISM_STATE_SECRET")
    if not secret:
        raise RuntimeError("PRISM_STATE_SECRET must be set for OAuth state signing")
    return secret
