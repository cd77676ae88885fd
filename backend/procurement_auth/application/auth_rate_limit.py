import hashlib
import time
from collections import defaultdict
from typing import DefaultDict, List

from ..errors import RateLimitExceededError

AUTH_RATE_LIMIT_MAX_ATTEMPTS = 5
AUTH_RATE_LIMIT_WINDOW_SECONDS = 60
IDENTIFIER_HASH_LENGTH = 64
IP_FALLBACK_LENGTH = 8


class SoftRateLimiter:
    """Per-process sliding window of failed attempts.

    Complements the persistent account lockout: it throttles a single
    client hammering one identifier, it does not lock anything.
    """

    def __init__(self, max_attempts: int, window_seconds: int) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._failures: DefaultDict[str, List[float]] = defaultdict(list)

    def _window(self, key: str, now: float) -> List[float]:
        cutoff = now - self.window_seconds
        recent = [ts for ts in self._failures.get(key, []) if ts >= cutoff]
        if recent:
            self._failures[key] = recent
        else:
            self._failures.pop(key, None)
        return recent

    def is_limited(self, key: str, now: float | None = None) -> bool:
        return len(self._window(key, now or time.time())) >= self.max_attempts

    def record_failure(self, key: str, now: float | None = None) -> None:
        current = now or time.time()
        recent = self._window(key, current)
        recent.append(current)
        self._failures[key] = recent

    def reset(self, key: str) -> None:
        self._failures.pop(key, None)

    def clear(self) -> None:
        self._failures.clear()


def _limiter_key(scope: str, identifier: str, client_ip: str | None) -> str:
    if not identifier:
        raise ValueError("identifier is required for rate limiting")
    digest = hashlib.sha256(identifier.encode()).hexdigest()[:IDENTIFIER_HASH_LENGTH]
    ip_component = client_ip or f"unknown-ip-{digest[:IP_FALLBACK_LENGTH]}"
    return f"{scope}:{ip_component}:{digest}"


def _ensure_not_limited(limiter: SoftRateLimiter, key: str) -> None:
    if limiter.is_limited(key):
        raise RateLimitExceededError()


auth_rate_limiter = SoftRateLimiter(
    max_attempts=AUTH_RATE_LIMIT_MAX_ATTEMPTS,
    window_seconds=AUTH_RATE_LIMIT_WINDOW_SECONDS,
)


def check_login_rate_limit(email: str, client_ip: str | None = None) -> str:
    key = _limiter_key("login", email.strip().lower(), client_ip)
    _ensure_not_limited(auth_rate_limiter, key)
    return key


def record_login_failure(key: str) -> None:
    auth_rate_limiter.record_failure(key)


def reset_login_limit(key: str) -> None:
    auth_rate_limiter.reset(key)


def check_refresh_rate_limit(refresh_token: str, client_ip: str | None = None) -> str:
    key = _limiter_key("refresh", refresh_token, client_ip)
    _ensure_not_limited(auth_rate_limiter, key)
    return key


def record_refresh_failure(key: str) -> None:
    auth_rate_limiter.record_failure(key)


def reset_refresh_limit(key: str) -> None:
    auth_rate_limiter.reset(key)
