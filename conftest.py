"""
Pytest configuration for venuesync tests.

Provides:
- @pytest.mark.concurrency marker for tests that drive several threads
- temp_db fixture shared by every test module
- make_track factory for queue and command tests
"""

import os
import tempfile

import pytest

from venuesync.database import Database
from venuesync.models import Track


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "concurrency: marks tests that run commands from several threads"
    )


@pytest.fixture
def temp_db():
    """Create a temporary database."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    db = Database(db_path=path)
    yield db
    db.close()
    os.unlink(path)


@pytest.fixture
def make_track():
    """Factory for tracks with predictable ids."""

    def _make(n, duration=180.0):
        return Track(
            video_id=f"vid{n}",
            title=f"Song {n}",
            channel_title="Test Channel",
            duration_seconds=duration,
        )

    return _make
