"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock


# ============================================================================
# Provider API Fixtures
# ============================================================================

@pytest.fixture
def mock_api():
    """Mock Real-Debrid API with empty defaults."""
    from debrid_sync.realdebrid_api import RealDebridApi

    api = MagicMock(spec=RealDebridApi)
    api.get_server_time = AsyncMock(
        return_value=datetime(2024, 1, 1, 13, 0, tzinfo=timezone(timedelta(hours=1)))
    )
    api.list_torrents = AsyncMock(return_value=[])
    api.get_torrent_info = AsyncMock()
    api.get_user = AsyncMock()
    api.add_magnet = AsyncMock()
    api.add_torrent_file = AsyncMock()
    api.instant_availability = AsyncMock(return_value={})
    api.select_files = AsyncMock(return_value=None)
    api.delete_torrent = AsyncMock(return_value=None)
    api.unrestrict_link = AsyncMock()
    api.close = AsyncMock()
    return api


@pytest.fixture
def session(mock_api):
    """Session without a clock offset, so timestamps pass through unchanged."""
    from debrid_sync.synchronizer import DebridSession

    return DebridSession(api=mock_api, clock_offset=None)


@pytest.fixture
def synchronizer(session):
    """Synchronizer bound to the mocked API."""
    from debrid_sync.synchronizer import TorrentSynchronizer

    return TorrentSynchronizer(session)


# ============================================================================
# Retry Fixtures
# ============================================================================

@pytest.fixture
def retry_config():
    """Create a retry config with fast settings for tests."""
    from debrid_sync.retry import RetryConfig

    return RetryConfig(
        max_attempts=3,
        initial_delay=0.01,  # Fast for tests
        max_delay=0.1,
        jitter=False,
    )


@pytest.fixture
def retry_handler(retry_config):
    """Create a retry handler for tests."""
    from debrid_sync.retry import RetryHandler

    return RetryHandler(retry_config)


# ============================================================================
# Sample Data Fixtures
# ============================================================================

@pytest.fixture
def sample_torrent_payload():
    """Detail payload of a finished two-file torrent."""
    from debrid_sync.realdebrid_api import TorrentPayload

    return TorrentPayload.model_validate({
        "id": "ABCDEF123",
        "filename": "Test.Show.S01",
        "original_filename": "Test.Show.S01.Original",
        "hash": "abc123",
        "bytes": 2000000000,
        "original_bytes": 2100000000,
        "host": "real-debrid.com",
        "split": 2000,
        "progress": 100,
        "status": "downloaded",
        "added": "2024-01-01T10:00:00.000Z",
        "ended": "2024-01-01T11:00:00.000Z",
        "files": [
            {"id": 1, "path": "/Test.Show.S01/episode1.mkv", "bytes": 1000000000, "selected": 1},
            {"id": 2, "path": "/Test.Show.S01/sample.txt", "bytes": 100, "selected": 0},
        ],
        "links": ["https://real-debrid.com/d/LINK1"],
        "speed": 0,
        "seeders": 5,
    })


@pytest.fixture
def sample_local_torrent():
    """Local torrent with three files, one of them tiny."""
    from debrid_sync.models import LocalFile, LocalTorrent

    return LocalTorrent(
        hash="abc123",
        rd_id="ABCDEF123",
        rd_name="Test.Show.S01",
        files=[
            LocalFile(id=1, path="/Test.Show.S01/episode1.mkv", bytes=1000 * 1024 * 1024),
            LocalFile(id=2, path="/Test.Show.S01/episode2.mkv", bytes=900 * 1024 * 1024),
            LocalFile(id=3, path="/Test.Show.S01/sample.txt", bytes=100),
        ],
    )


# ============================================================================
# Logging Fixtures
# ============================================================================

@pytest.fixture
def clean_logging():
    """Clean up logging handlers before and after test."""
    import logging

    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level

    yield

    # Restore original state
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in original_handlers:
        root.addHandler(handler)
    root.setLevel(original_level)
