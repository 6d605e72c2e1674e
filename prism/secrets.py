"""
Load platform credentials from Google Cloud Secret Manager when SECRET_MANAGER=true.

Only runs when DEPLOYMENT_MODE=standalone. SECRET_MANAGER_SECRET_NAMES is a
comma-separated list of secret names; each name is also the env var name, so
secret "META_APP_SECRET" -> os.environ["META_APP_SECRET"]. Must run before any
platform config is read.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional

logger = logging.getLogger(__name__)


def _is_secret_manager_enabled() -> bool:
    raw = (os.environ.get("SECRET_MANAGER") or "").strip().lower()
    return raw in ("true", "1", "yes")


def _is_standalone() -> bool:
    return (os.environ.get("DEPLOYMENT_MODE") or "standalone").strip().lower() == "standalone"


def _get_project_id() -> Optional[str]:
    project_id = (os.environ.get("GOOGLE_PROJECT_ID") or os.environ.get("GOOGLE_CLOUD_PROJECT") or "").strip()
    return project_id or None


def _secret_names() -> List[str]:
    raw = (os.environ.get("SECRET_MANAGER_SECRET_NAMES") or "").strip()
    return [n.strip() for n in raw.split(",") if n.strip()]


def _fetch_secret(client, project_id: str, secret_name: str) -> Optional[str]:
    """Latest version of a secret as text, or None when it cannot be read."""
    from google.api_core import exceptions as gcp_exceptions

    name = f"projects/{project_id}/secrets/{secret_name}/versions/latest"
    try:
        response = client.access_secret_version(request={"name": name})
    except gcp_exceptions.GoogleAPICallError as e:
        logger.warning("Failed to access secret '%s': %s", secret_name, e)
        return None
    return response.payload.data.decode("utf-8")


def load_secrets_from_secret_manager(override: bool = False) -> bool:
    """
    If SECRET_MANAGER=true and DEPLOYMENT_MODE=standalone, fetch the named
    secrets and set them in os.environ. Variables already set (for example from
    .env) are kept unless override=True. Returns True if any secret was loaded.
    """
    if not _is_secret_manager_enabled():
        return False
    if not _is_standalone():
        logger.info("SECRET_MANAGER=true but DEPLOYMENT_MODE is not 'standalone'; skipping Secret Manager load.")
        return False

    try:
        from google.cloud import secretmanager
    except ImportError:
        logger.warning(
            "SECRET_MANAGER=true but google-cloud-secret-manager is not installed. "
            "Install prism[secrets] or set SECRET_MANAGER=false."
        )
        return False

    project_id = _get_project_id()
    if not project_id:
        logger.warning("SECRET_MANAGER=true but neither GOOGLE_PROJECT_ID nor GOOGLE_CLOUD_PROJECT is set.")
        return False

    secret_names = _secret_names()
    if not override:
        kept = [n for n in secret_names if os.environ.get(n)]
        if kept:
            logger.info("Keeping existing env value(s) for: %s.", ", ".join(kept))
        secret_names = [n for n in secret_names if n not in kept]
        if not secret_names and kept:
            return False
    if not secret_names:
        logger.warning(
            "SECRET_MANAGER=true but SECRET_MANAGER_SECRET_NAMES is empty. "
            "Set it to a comma-separated list of secret names (each name = env var name)."
        )
        return False

    client = secretmanager.SecretManagerServiceClient()
    loaded: List[str] = []
    for name in secret_names:
        value = _fetch_secret(client, project_id, name)
        if value is not None:
            os.environ[name] = value
            loaded.append(name)

    if loaded:
        logger.info("Loaded %d env var(s) from Secret Manager: %s.", len(loaded), ", ".join(loaded))
    return bool(loaded)
