"""HMAC verification of payment completion callbacks."""
from __future__ import annotations

import hashlib
import hmac


class SignatureVerifier:
    """Checks provider signatures over ``order_id|payment_id``."""

    separator = "|"

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("secret must be provided")
        self._secret = secret.encode("utf-8")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(secret=***)"

    def canonical_message(self, order_id: str, payment_id: str) -> str:
        return f"{order_id}{self.separator}{payment_id}"

    def sign(self, order_id: str, payment_id: str) -> str:
        message = self.canonical_message(order_id, payment_id).encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Return ``True`` only when ``signature`` equals the expected hex digest."""

        if not isinstance(signature, str):
            return False
        expected = self.sign(order_id, payment_id).encode("ascii")
        return hmac.compare_digest(expected, signature.encode("utf-8"))


__all__ = ["SignatureVerifier"]
