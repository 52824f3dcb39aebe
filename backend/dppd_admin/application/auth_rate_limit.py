import hashlib
import time
from collections import defaultdict
from typing import DefaultDict, List

LOGIN_RATE_LIMIT_MAX_ATTEMPTS = 5
LOGIN_RATE_LIMIT_WINDOW_SECONDS = 15 * 60
LOGIN_LOCKOUT_SECONDS = 30 * 60
RATE_LIMIT_MESSAGE = "Too many login attempts. Please try again later."
IDENTIFIER_HASH_LENGTH = 64
IP_FALLBACK_LENGTH = 8


class RateLimitExceededError(Exception):
    """Raised when the rate limit is exceeded for a given key."""

    def __init__(self, retry_after: int) -> None:
        super().__init__(RATE_LIMIT_MESSAGE)
        self.retry_after = retry_after


class SoftRateLimiter:
    """Per-key failure counter with a sliding window and a fixed lockout.

    In-process only: each worker keeps its own counters.
    """

    def __init__(self, max_attempts: int, window_seconds: int, lockout_seconds: int) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.lockout_seconds = lockout_seconds
        self._attempts: DefaultDict[str, List[float]] = defaultdict(list)
        self._locked_until: dict[str, float] = {}

    def _prune(self, key: str, now: float) -> List[float]:
        cutoff = now - self.window_seconds
        attempts = [ts for ts in self._attempts.get(key, []) if ts >= cutoff]
        if attempts:
            self._attempts[key] = attempts
        else:
            self._attempts.pop(key, None)
        return attempts

    def retry_after(self, key: str, now: float | None = None) -> int:
        """Seconds until ``key`` may try again, 0 when it is not locked."""
        current = now if now is not None else time.time()
        locked_until = self._locked_until.get(key)
        if locked_until is None:
            return 0
        if locked_until <= current:
            self._locked_until.pop(key, None)
            return 0
        return max(1, int(locked_until - current))

    def is_limited(self, key: str, now: float | None = None) -> bool:
        return self.retry_after(key, now) > 0

    def record_failure(self, key: str, now: float | None = None) -> None:
        current = now if now is not None else time.time()
        attempts = self._prune(key, current)
        attempts.append(current)
        self._attempts[key] = attempts
        if len(attempts) >= self.max_attempts:
            self._locked_until[key] = current + self.lockout_seconds
            self._attempts.pop(key, None)

    def reset(self, key: str) -> None:
        self._attempts.pop(key, None)
        self._locked_until.pop(key, None)

    def clear(self) -> None:
        self._attempts.clear()
        self._locked_until.clear()


def _make_key(scope: str, identifier: str, client_ip: str | None) -> str:
    if not identifier:
        raise ValueError("identifier is required for rate limiting")
    identifier_hash = hashlib.sha256(identifier.encode()).hexdigest()
    identifier_component = identifier_hash[:IDENTIFIER_HASH_LENGTH]
    ip_component = client_ip or f"unknown-ip-{identifier_hash[:IP_FALLBACK_LENGTH]}"
    return f"{scope}:{ip_component}:{identifier_component}"


login_rate_limiter = SoftRateLimiter(
    max_attempts=LOGIN_RATE_LIMIT_MAX_ATTEMPTS,
    window_seconds=LOGIN_RATE_LIMIT_WINDOW_SECONDS,
    lockout_seconds=LOGIN_LOCKOUT_SECONDS,
)


def check_login_rate_limit(username: str, client_ip: str | None = None) -> str:
    key = _make_key("login", username.strip().lower(), client_ip)
    retry_after = login_rate_limiter.retry_after(key)
    if retry_after:
        raise RateLimitExceededError(retry_after)
    return key


def record_login_failure(key: str) -> None:
    login_rate_limiter.record_failure(key)


def reset_login_limit(key: str) -> None:
    login_rate_limiter.reset(key)
