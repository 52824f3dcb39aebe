from fastapi import status
import pytest

from dppd_admin.application.auth_rate_limit import (
    LOGIN_RATE_LIMIT_MAX_ATTEMPTS,
    RateLimitExceededError,
    SoftRateLimiter,
    check_login_rate_limit,
    record_login_failure,
)
from tests.app_helpers import login, make_client, seed_admin_user
from tests.store_helpers import InMemoryStoreFactory

PASSWORD = "correct horse battery"


@pytest.fixture
def client():
    factory = InMemoryStoreFactory()
    seed_admin_user(factory, "chief", PASSWORD)
    return make_client(factory)


def test_limiter_locks_after_max_failures() -> None:
    limiter = SoftRateLimiter(max_attempts=3, window_seconds=60, lockout_seconds=300)

    for offset in range(2):
        limiter.record_failure("key", now=1000 + offset)
    assert not limiter.is_limited("key", now=1002)

    limiter.record_failure("key", now=1002)

    assert limiter.is_limited("key", now=1003)
    assert limiter.retry_after("key", now=1002) == 300
    assert not limiter.is_limited("key", now=1302)


def test_failures_outside_window_are_forgotten() -> None:
    limiter = SoftRateLimiter(max_attempts=3, window_seconds=60, lockout_seconds=300)

    limiter.record_failure("key", now=1000)
    limiter.record_failure("key", now=1001)
    limiter.record_failure("key", now=1100)

    assert not limiter.is_limited("key", now=1100)


def test_reset_clears_lockout() -> None:
    limiter = SoftRateLimiter(max_attempts=1, window_seconds=60, lockout_seconds=300)
    limiter.record_failure("key", now=1000)

    limiter.reset("key")

    assert not limiter.is_limited("key", now=1001)


def test_keys_are_per_address_and_username() -> None:
    key = check_login_rate_limit("Chief", "203.0.113.5")
    for _ in range(LOGIN_RATE_LIMIT_MAX_ATTEMPTS):
        record_login_failure(key)

    with pytest.raises(RateLimitExceededError) as exc_info:
        check_login_rate_limit(" chief ", "203.0.113.5")
    assert exc_info.value.retry_after > 0

    check_login_rate_limit("chief", "198.51.100.7")
    check_login_rate_limit("deputy", "203.0.113.5")


def test_login_rate_limit_exceeded(client) -> None:
    for _ in range(LOGIN_RATE_LIMIT_MAX_ATTEMPTS):
        response = login(client, "chief", "bad-password")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    response = login(client, "chief", PASSWORD)

    assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    error = response.json()["error"]
    assert error["code"] == "RATE_LIMITED"
    assert error["details"]["retryAfter"] > 0


def test_login_success_resets_limit(client) -> None:
    for _ in range(LOGIN_RATE_LIMIT_MAX_ATTEMPTS - 1):
        response = login(client, "chief", "bad-password")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    response = login(client, "chief", PASSWORD)
    assert response.status_code == status.HTTP_200_OK

    for _ in range(LOGIN_RATE_LIMIT_MAX_ATTEMPTS - 1):
        response = login(client, "chief", "bad-password")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    response = login(client, "chief", PASSWORD)
    assert response.status_code == status.HTTP_200_OK


def test_rotating_forwarded_for_does_not_escape_lockout(client) -> None:
    for attempt in range(LOGIN_RATE_LIMIT_MAX_ATTEMPTS):
        response = client.post(
            "/api/auth/login",
            json={"username": "chief", "password": "bad-password"},
            headers={"x-forwarded-for": f"198.51.100.{attempt}"},
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    response = client.post(
        "/api/auth/login",
        json={"username": "chief", "password": PASSWORD},
        headers={"x-forwarded-for": "198.51.100.250"},
    )

    assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
