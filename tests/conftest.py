"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the TESTING environment variable so no .env file is loaded and
pins the throttle settings the tests rely on.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("THROTTLE_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("THROTTLE_FORWARDED_IP_STRATEGY", "none")
os.environ.setdefault("LOG_FORMAT", "json")

import pytest  # noqa: E402


class FakeClock:
    """Deterministic clock used to test window expiration."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
