"""
Shared-secret authentication for the intake and admin APIs.

The upstream provisioning client authenticates with a static secret sent as
``Authorization: SharedSecret <secret>`` (``Bearer <secret>`` is accepted
too, for clients that only speak RFC 6750).

Security:
- Constant-time comparison (hmac.compare_digest)
- The secret itself is never logged; only a truncated SHA-256 of the
  presented value
"""

import hashlib
import hmac
import logging
from typing import Optional

from flask import current_app, g, request

from app.core.provisioning_service import ScimError

AUTH_SCHEMES = ("SharedSecret", "Bearer")

logger = logging.getLogger(__name__)


def extract_secret(auth_header: str) -> Optional[str]:
    """Return the credential part of a SharedSecret/Bearer header, or None.

    Scheme names are matched case-insensitively.
    """
    scheme, _, credential = (auth_header or "").strip().partition(" ")
    if not credential:
        return None
    if scheme.lower() not in {s.lower() for s in AUTH_SCHEMES}:
        return None
    credential = credential.strip()
    return credential or None


def verify_shared_secret(auth_header: str, expected: str) -> bool:
    """Validate an Authorization header against the configured secret."""
    provided = extract_secret(auth_header)
    if provided is None or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def _log_auth_failure(auth_header: str) -> None:
    token_hash = hashlib.sha256((auth_header or "").encode()).hexdigest()[:12]
    logger.warning(
        "Rejected request | path=%s | header_hash=%s | correlation_id=%s | client_ip=%s",
        request.path,
        token_hash,
        g.get("correlation_id", "none"),
        request.headers.get("X-Forwarded-For", request.remote_addr),
    )


def authenticate_request() -> None:
    """Raise ScimError(401) unless the request carries the shared secret.

    Suitable for use directly inside a ``before_request`` hook.
    """
    cfg = current_app.config["APP_CONFIG"]
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        raise ScimError(401, "Authorization header missing. Provide 'Authorization: SharedSecret <secret>'.")

    if not verify_shared_secret(auth_header, cfg.scim_shared_secret):
        _log_auth_failure(auth_header)
        raise ScimError(401, "Invalid credentials")

