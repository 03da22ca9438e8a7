"""HMAC-based tokens for confirm/unsubscribe links.

A token is HMAC-SHA256(secret, email) rendered as lowercase hex. It carries no
timestamp or nonce, so it stays valid for an address until the secret rotates.
The same token authorizes both confirming and unsubscribing.
"""

from __future__ import annotations

import hashlib
import hmac
from urllib.parse import urlencode


def sign(secret: str, message: str) -> str:
    """Return the hex HMAC-SHA256 of ``message`` keyed with ``secret``.

    No normalization happens here: callers pass the already-normalized email.
    """
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def verify(secret: str, message: str, token: str) -> bool:
    """Check ``token`` against the expected signature in constant time.

    A length mismatch returns early; that leaks the length only.
    """
    if not isinstance(token, str) or not token:
        return False
    expected = sign(secret, message)
    if len(expected) != len(token):
        return False
    return hmac.compare_digest(expected.encode(), token.encode())


def _link(base_url: str, path: str, email: str, token: str) -> str:
    query = urlencode({"email": email, "token": token})
    return f"{base_url.rstrip('/')}{path}?{query}"


def confirm_url(base_url: str, email: str, token: str) -> str:
    return _link(base_url, "/api/confirm", email, token)


def unsubscribe_url(base_url: str, email: str, token: str) -> str:
    return _link(base_url, "/api/unsubscribe", email, token)
