"""Callback signatures.

Flows sign the raw callback body with the shared secret::

    X-Webhook-Signature: sha256=<hex hmac-sha256(secret, body)>

Callers that cannot compute an HMAC may send the secret itself in
``X-Webhook-Secret`` instead.  Both are compared in constant time.
"""

from __future__ import annotations

import hashlib
import hmac

from relay.core.errors import ConfigError, SignatureError

SIGNATURE_HEADER = "X-Webhook-Signature"
SECRET_HEADER = "X-Webhook-Secret"
_PREFIX = "sha256="


def sign_payload(secret: str, body: bytes) -> str:
    """Header value for *body* signed with *secret*."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{_PREFIX}{digest}"


def verify_callback(
    secret: str | None,
    body: bytes,
    *,
    signature: str | None = None,
    provided_secret: str | None = None,
) -> None:
    """Raise :class:`SignatureError` unless the request proves it knows *secret*.

    Raises:
        ConfigError: no callback secret is configured.
        SignatureError: missing or mismatched signature.
    """
    if not secret:
        raise ConfigError("callback secret not configured")
    if signature:
        if hmac.compare_digest(sign_payload(secret, body), signature.strip()):
            return
        raise SignatureError("invalid callback signature")
    if provided_secret:
        if hmac.compare_digest(secret.encode("utf-8"), provided_secret.encode("utf-8")):
            return
        raise SignatureError("invalid callback secret")
    raise SignatureError(f"missing {SIGNATURE_HEADER} header")
