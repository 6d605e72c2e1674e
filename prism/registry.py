"""
ConnectorRegistry discovers and holds one connector instance per platform.

Usage:
    from prism.registry import registry
    connector = registry.get("meta")           # KeyError if unknown
    registry.platforms()                       # ["google", "meta", "shopify"]
"""
from __future__ import annotations

import importlib
import logging
import pkgutil
from typing import Dict, List, Optional

import httpx

from prism.providers.ads.base import AdsConnector

logger = logging.getLogger(__name__)

CONNECTOR_PACKAGE = "prism.providers.ads"
SKIP_MODULES = ("base", "utils", "__init__")


class ConnectorRegistry:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport
        self._connectors: Dict[str, AdsConnector] = {}

    def register(self, connector: AdsConnector) -> None:
        if connector.platform in self._connectors:
            logger.warning("Replacing connector for platform %s", connector.platform)
        self._connectors[connector.platform] = connector

    def discover(self) -> None:
        """
        Scan the connector package and instantiate every concrete AdsConnector
        subclass. Credentials are read lazily per call, so nothing is skipped
        for missing configuration here.
        """
        pkg = importlib.import_module(CONNECTOR_PACKAGE)
        for _finder, mod_name, _ispkg in pkgutil.iter_modules(pkg.__path__):
            if mod_name in SKIP_MODULES:
                continue
            try:
                mod = importlib.import_module(f"{CONNECTOR_PACKAGE}.{mod_name}")
            except ImportError as exc:
                logger.warning("Could not import connector module %s.%s: %s", CONNECTOR_PACKAGE, mod_name, exc)
                continue

            for attr_name in vars(mod):
                attr = getattr(mod, attr_name)
                if (
                    isinstance(attr, type)
                    and issubclass(attr, AdsConnector)
                    and attr is not AdsConnector
                    and not getattr(attr, "__abstractmethods__", None)
                    and attr.platform not in self._connectors
                ):
                    self.register(attr(transport=self._transport))
                    logger.info("Registered connector: %s (%s)", attr.platform, attr.display_name)

    def get(self, platform: str) -> AdsConnector:
        if not self._connectors:
            self.discover()
        try:
            return self._connectors[platform]
        except KeyError:
            raise KeyError(f"No connector registered for platform '{platform}'") from None

    def platforms(self) -> List[str]:
        if not self._connectors:
            self.discover()
        return sorted(self._connectors)


# Module-level singleton, import this everywhere
registry = ConnectorRegistry()
