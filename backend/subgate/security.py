from __future__ import annotations

import hmac
import logging
from typing import Optional

from .metrics import AUTH_BANS_TOTAL
from .rate_limit import RateLimiter

logger = logging.getLogger("subgate.security")


def verify_token(candidate: Optional[str], expected: Optional[str]) -> bool:
    """Compare a presented token with the configured secret in constant time.

    Fails closed on missing or empty values and on length mismatch; equal-length
    inputs are compared over every byte regardless of where they first differ.
    """
    if not expected or not candidate:
        return False

    a = candidate.encode("utf-8")
    b = expected.encode("utf-8")
    if len(a) != len(b):
        return False
    return hmac.compare_digest(a, b)


class AuthGate:
    """Token check wired to the auth-failure limiter."""

    def __init__(self, expected_token: str, limiter: RateLimiter, ban_seconds: int) -> None:
        self.expected_token = expected_token
        self.limiter = limiter
        self.ban_seconds = ban_seconds

    def verify(self, candidate: Optional[str]) -> bool:
        return verify_token(candidate, self.expected_token)

    def record_failure(self, key: str) -> bool:
        """Count a failed attempt; return True once ``key`` is banned."""
        if self.limiter.check_and_increment(key):
            return False

        record = self.limiter.get_record(key)
        if record is None or not record.banned_at(self.limiter.now()):
            self.limiter.ban(key, self.ban_seconds)
            AUTH_BANS_TOTAL.inc()
            logger.warning(
                "Client banned due to too many auth failures",
                extra={"event": "auth_ban", "ip": key, "ban_seconds": self.ban_seconds},
            )
        return True

    def record_success(self, key: str) -> None:
        self.limiter.clear(key)
