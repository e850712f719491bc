"""
Webhook Security

HMAC signature verification and per-client rate limiting for the presale
mint webhook.
"""

import hashlib
import hmac
import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

logger = logging.getLogger("webhook_security")

SIGNATURE_PREFIX = "sha256="
RATE_LIMIT = 100
RATE_WINDOW_SECONDS = 60


def compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Check an HMAC-SHA256 hex signature over the raw request body.

    Accepts both "sha256=<hex>" and bare hex. Malformed input is rejected,
    never raised.
    """
    if not signature or not secret:
        return False

    received = signature[len(SIGNATURE_PREFIX):] if signature.startswith(SIGNATURE_PREFIX) else signature
    try:
        received_bytes = bytes.fromhex(received)
    except ValueError:
        logger.warning("Webhook signature is not valid hex")
        return False

    expected = bytes.fromhex(compute_signature(payload, secret))
    return hmac.compare_digest(expected, received_bytes)


class RateLimiter:
    """
    Fixed-window request counter per identifier.

    A window opens on the first request and lasts window_seconds.
    """

    def __init__(self, limit: int = RATE_LIMIT, window_seconds: int = RATE_WINDOW_SECONDS):
        self._limit = limit
        self._window = timedelta(seconds=window_seconds)
        self._lock = threading.Lock()
        self._windows: Dict[str, Tuple[int, datetime]] = {}

    def check(self, identifier: str, now: Optional[datetime] = None) -> bool:
        """Count a request. Returns False when the identifier is over the limit."""
        now = now or datetime.utcnow()
        with self._lock:
            record = self._windows.get(identifier)
            if record is None or now - record[1] >= self._window:
                self._windows[identifier] = (1, now)
                return True

            count, started = record
            if count >= self._limit:
                logger.warning(f"Rate limit exceeded for {identifier}")
                return False

            self._windows[identifier] = (count + 1, started)
            return True

    def reset(self, identifier: Optional[str] = None) -> None:
        with self._lock:
            if identifier is None:
                self._windows.clear()
            else:
                self._windows.pop(identifier, None)
