"""Shared test fixtures and configuration."""
import os

import pytest

# Settings and the session secret are read from the environment; set them
# before any dppd_admin module is imported
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:4321")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-with-at-least-32-characters")
# Only tests that opt in treat the TestClient peer as a reverse proxy
os.environ["TRUSTED_PROXIES"] = ""

from dppd_admin.application.auth_rate_limit import login_rate_limiter  # noqa: E402
from dppd_admin.config import reset_settings  # noqa: E402
from dppd_admin.dependencies import roles_config_cache  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_process_state():
    login_rate_limiter.clear()
    roles_config_cache.invalidate()
    yield
    login_rate_limiter.clear()
    roles_config_cache.invalidate()


@pytest.fixture
def trusted_test_proxy(monkeypatch: pytest.MonkeyPatch):
    """Trust forwarding headers sent by the TestClient peer."""
    monkeypatch.setenv("TRUSTED_PROXIES", "testclient")
    reset_settings()
    yield
    reset_settings()
