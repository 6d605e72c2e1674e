from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from prism.config import EngineConfig, GoogleAdsConfig, MetaConfig, ShopifyConfig, oauth_state_secret
from prism.errors import ApiError
from prism.providers.ads.google_ads import GoogleAdsConnector
from prism.providers.ads.meta import MetaAdsConnector
from prism.providers.ads.shopify import ShopifyConnector
from prism.registry import ConnectorRegistry
from prism.secrets import load_secrets_from_secret_manager


def test_platform_configs_read_environment(platform_env):
    assert MetaConfig.from_env().app_id == "meta-app"
    assert GoogleAdsConfig.from_env().developer_token == "dev-token"
    assert ShopifyConfig.from_env().client_secret == "shopify-secret"
    assert oauth_state_secret() == "state-signing-secret"


def test_missing_credentials_raise_api_error():
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(ApiError) as excinfo:
            GoogleAdsConfig.from_env()
        assert excinfo.value.platform == "Google Ads"
        with pytest.raises(RuntimeError):
            oauth_state_secret()


def test_engine_config_defaults_and_overrides():
    with patch.dict(os.environ, {}, clear=True):
        assert EngineConfig.from_env() == EngineConfig(concurrency=4, timeout_s=12.0)
    with patch.dict(os.environ, {"PRISM_FETCH_CONCURRENCY": "8", "PRISM_FETCH_TIMEOUT_SECONDS": "2.5"}):
        assert EngineConfig.from_env() == EngineConfig(concurrency=8, timeout_s=2.5)
    with patch.dict(os.environ, {"PRISM_FETCH_CONCURRENCY": "many"}):
        with pytest.raises(ValueError):
            EngineConfig.from_env()


def test_registry_discovers_all_connectors():
    registry = ConnectorRegistry()
    assert registry.platforms() == ["google", "meta", "shopify"]
    assert isinstance(registry.get("meta"), MetaAdsConnector)
    assert isinstance(registry.get("google"), GoogleAdsConnector)
    assert isinstance(registry.get("shopify"), ShopifyConnector)
    with pytest.raises(KeyError):
        registry.get("tiktok")


def test_secret_manager_is_opt_in():
    with patch.dict(os.environ, {}, clear=True):
        assert load_secrets_from_secret_manager() is False
    with patch.dict(os.environ, {"SECRET_MANAGER": "true", "DEPLOYMENT_MODE": "saas"}, clear=True):
        assert load_secrets_from_secret_manager() is False
