"""HMAC-SHA256 signing of webhook bodies.

The signature covers the exact bytes put on the wire, so callers must sign the
stored body and send that same body; re-serializing the payload would break
verification on the receiver.
"""

import hashlib
import hmac


def sign_payload(body: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 of `body` keyed with `secret`."""

    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Constant-time check of a received `X-Webhook-Signature` value."""

    if not signature:
        return False
    return hmac.compare_digest(sign_payload(body, secret), signature)
