# tests/conftest.py
"""
Global test bootstrap
- Pins signing/internal secrets before the settings singleton is built
- Makes SlowAPI rate-limiting test-friendly (bypass by default)
- Keeps limiter counters isolated per test run (namespace)
- Pulls in the shared media fixtures (repository, fakes, app client)
"""

from __future__ import annotations

import os
import random

import pytest

# ──────────────────────────────────────────────────────────────────────────────
# 🌱 Test env (set BEFORE importing the app so settings pick it up)
# ──────────────────────────────────────────────────────────────────────────────
os.environ.setdefault("ENV", "development")
os.environ.setdefault("MEDIA_SIGNING_SECRET", "unit-test-signing-secret")
os.environ.setdefault("INTERNAL_API_KEY", "unit-test-internal-key")
os.environ.setdefault("RATELIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_TEST_BYPASS", "1")
os.environ.setdefault("RATE_LIMIT_NAMESPACE", f"pytest-{random.getrandbits(32)}")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# ──────────────────────────────────────────────────────────────────────────────
# 📦 Shared fixtures
# ──────────────────────────────────────────────────────────────────────────────
from tests.fixtures.media import *  # noqa: F401,F403,E402


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"
