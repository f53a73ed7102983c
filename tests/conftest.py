"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from qdrant_client import AsyncQdrantClient

# Add tests directory to path so factories can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from herald.config import RetryPolicy, Settings  # noqa: E402
from herald.storage import HeraldStorage  # noqa: E402


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy with millisecond backoff and no jitter."""
    return RetryPolicy(
        max_attempts=3,
        backoff_base_seconds=0.01,
        backoff_max_seconds=0.05,
        jitter_ratio=0.0,
    )


@pytest.fixture
def test_settings(fast_policy: RetryPolicy) -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        env="test",
        collection_prefix="test",
        retry=fast_policy,
        scheduler_poll_interval_seconds=0.05,
    )


@pytest.fixture
async def storage():
    """Create an in-memory storage instance for testing.

    Uses qdrant-client's local mode with in-memory storage.
    """
    store = HeraldStorage(prefix="test", client=AsyncQdrantClient(location=":memory:"))
    await store.initialize()

    yield store

    await store.close()
