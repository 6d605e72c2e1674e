"""
Signed OAuth ``state`` parameter.

The state is ``base64url(json envelope) + "." + base64url(hmac-sha256)``.
The envelope binds the provider, a random nonce, an expiry and optional
payload; the nonce is also set as a cookie so a callback only verifies in the
browser that started the flow. Verification fails closed.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Dict, Optional

from prism.config import oauth_state_secret

logger = logging.getLogger(__name__)

OAUTH_STATE_TTL_SECONDS = 10 * 60
PROVIDERS = ("google", "meta", "shopify")


@dataclass
class OAuthState:
    state: str
    cookie_name: str
    cookie_value: str
    max_age: int = OAUTH_STATE_TTL_SECONDS


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _sign(data_b64: str, secret: Optional[str] = None) -> str:
    key = (secret or oauth_state_secret()).encode("utf-8")
    return _b64encode(hmac.new(key, data_b64.encode("ascii"), hashlib.sha256).digest())


def _secure_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def state_cookie_name(provider: str) -> str:
    return f"oauth_state_{provider}"


def parse_cookie_value(cookie_header: Optional[str], name: str) -> Optional[str]:
    if not cookie_header:
        return None
    for part in cookie_header.split(";"):
        key, sep, value = part.strip().partition("=")
        if sep and key == name:
            return value or None
    return None


def create_oauth_state(
    provider: str,
    payload: Optional[Dict[str, str]] = None,
    now: Optional[float] = None,
    secret: Optional[str] = None,
) -> OAuthState:
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown OAuth provider: {provider}")
    nonce = secrets.token_hex(24)
    issued = time.time() if now is None else now
    envelope = {"p": provider, "n": nonce, "e": int(issued) + OAUTH_STATE_TTL_SECONDS}
    if payload:
        envelope["d"] = dict(payload)

    data_b64 = _b64encode(json.dumps(envelope, separators=(",", ":")).encode("utf-8"))
    return OAuthState(
        state=f"{data_b64}.{_sign(data_b64, secret)}",
        cookie_name=state_cookie_name(provider),
        cookie_value=nonce,
    )


def verify_oauth_state(
    provider: str,
    state: Optional[str],
    cookie_header: Optional[str],
    now: Optional[float] = None,
    secret: Optional[str] = None,
) -> Optional[Dict[str, str]]:
    """
    Payload dict (empty when none was bound) if the state is authentic, unexpired,
    for this provider and matches the nonce cookie; None otherwise.
    """
    if not state:
        return None
    data_b64, sep, provided_sig = state.partition(".")
    if not sep or not data_b64 or not provided_sig:
        return None
    if not _secure_equal(provided_sig, _sign(data_b64, secret)):
        logger.warning("OAuth state signature mismatch for provider=%s", provider)
        return None

    try:
        envelope = json.loads(_b64decode(data_b64).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(envelope, dict):
        return None

    if envelope.get("p") != provider:
        return None
    nonce = envelope.get("n")
    if not isinstance(nonce, str) or not nonce:
        return None
    expires_at = envelope.get("e")
    if not isinstance(expires_at, int):
        return None
    current = time.time() if now is None else now
    if int(current) > expires_at:
        logger.info("OAuth state expired for provider=%s", provider)
        return None

    cookie_nonce = parse_cookie_value(cookie_header, state_cookie_name(provider))
    if not cookie_nonce or not _secure_equal(cookie_nonce, nonce):
        return None

    data = envelope.get("d") or {}
    return data if isinstance(data, dict) else None
