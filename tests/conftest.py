import sys
import os
from dataclasses import replace
from pathlib import Path

import pytest

# Ensure project root is on sys.path for `import app.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Keep the module-level app offline and in-process
os.environ.setdefault("AI_PROVIDER", "mock")
os.environ.setdefault("SESSION_STORE", "memory")
os.environ.setdefault("HMAC_SECRET", "test-signing-secret")

from app.knowledge.flows import load_flows  # noqa: E402
from app.settings import DEFAULT_FLOWS_PATH, Settings  # noqa: E402

ORIGIN = "https://www.investonline.in"
BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/124.0 Safari/537.36",
    "Accept": "application/json",
    "Accept-Language": "en-IN,en;q=0.9",
}


class FakeClock:
    """Manually advanced time source for TTL, expiry and window tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        allowed_origins=[ORIGIN, "https://beta.investonline.in"],
        signing_secret="test-signing-secret",
        automation_enabled=False,
    )


@pytest.fixture
def make_settings(settings):
    def _make(**overrides):
        return replace(settings, **overrides)
    return _make


@pytest.fixture(scope="session")
def flows():
    return load_flows(DEFAULT_FLOWS_PATH)
