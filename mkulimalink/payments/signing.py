"""
signing.py - HMAC signatures for gateway requests and callbacks.

Signer and verifier share one function. The message is the payload
without its "signature" field, serialised as JSON with sorted keys and
compact separators, so field order never affects the result.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict

from ..errors import VerificationFailure

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("CallbackVerifier")

SIGNATURE_FIELD = "signature"


def canonical_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def generate_signature(data: Dict[str, Any], secret: str) -> str:
    """Hex HMAC-SHA256 over every field except the signature itself."""
    unsigned = {k: v for k, v in data.items() if k != SIGNATURE_FIELD}
    message = canonical_json(unsigned)
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_payload(data: Dict[str, Any], secret: str) -> Dict[str, Any]:
    """Return a copy of data with its signature attached."""
    signed = {k: v for k, v in data.items() if k != SIGNATURE_FIELD}
    signed[SIGNATURE_FIELD] = generate_signature(signed, secret)
    return signed


class CallbackVerifier:
    """Authenticates inbound payment notifications. Fails closed."""

    def __init__(self, secret: str):
        self.secret = secret

    def verify(self, payload) -> bool:
        try:
            provided = payload[SIGNATURE_FIELD]
            if not isinstance(provided, str):
                logger.warning("Callback signature is not a string")
                return False
            expected = generate_signature(payload, self.secret)
            valid = hmac.compare_digest(provided, expected)
        except Exception as e:
            logger.warning(f"Callback verification error: {e}")
            return False

        if not valid:
            logger.warning(f"Callback signature mismatch for order {payload.get('order_id')}")
        return valid

    def require_valid(self, payload) -> Dict[str, Any]:
        """Return the payload, or raise VerificationFailure."""
        if not self.verify(payload):
            raise VerificationFailure("Callback signature verification failed")
        return payload
