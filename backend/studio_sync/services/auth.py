"""Shared-secret check for the ingestion webhook.

- Secret comes from WEBHOOK_SECRET; when it is empty every request is accepted
  (dev mode, intentional)
- Accepted headers: `Authorization: Bearer <secret>` or `X-Webhook-Secret: <secret>`
- Comparisons use hmac.compare_digest
"""
import hmac
import logging
from typing import Mapping, Optional

from studio_sync import config

logger = logging.getLogger(__name__)

SECRET_HEADER = "x-webhook-secret"


def _matches(candidate: Optional[str], secret: str) -> bool:
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), secret.encode("utf-8"))


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def verify_webhook_secret(headers: Mapping[str, str], secret: Optional[str] = None) -> bool:
    """True when the request carries the shared secret (or no secret is configured)."""
    secret = config.webhook_secret() if secret is None else secret
    if not secret:
        return True
    if _matches(bearer_token(headers.get("authorization")), secret):
        return True
    if _matches(headers.get(SECRET_HEADER), secret):
        return True
    logger.warning("Webhook rejected: missing or invalid secret")
    return False


def cors_headers(origin: Optional[str]) -> dict:
    """CORS headers for the storefront; a foreign origin gets the storefront origin back."""
    allowed = config.STOREFRONT_ORIGIN
    return {
        "Access-Control-Allow-Origin": origin if origin == allowed else allowed,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Webhook-Secret",
        "Access-Control-Max-Age": "86400",
    }
