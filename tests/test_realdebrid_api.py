"""
Tests for the Real-Debrid REST Client (debrid_sync/realdebrid_api.py)
"""

import asyncio
import aiohttp
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

from debrid_sync.config import Settings
from debrid_sync.exceptions import (
    DebridApiError,
    DebridAuthenticationError,
    DebridConnectionError,
    DebridTimeoutError,
    MissingCredentialsError,
    TorrentNotFoundError,
)
from debrid_sync.realdebrid_api import RealDebridApi


def _response(status=200, json_data=None, text=""):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)
    return response


def _context(response):
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=response)
    cm.__aexit__ = AsyncMock(return_value=False)
    return cm


class TestRealDebridApiInit:
    """Tests for client construction."""

    @pytest.mark.parametrize("key", ["", "   "])
    def test_missing_key(self, key):
        """Test a blank API key fails before any request."""
        with pytest.raises(MissingCredentialsError):
            RealDebridApi(key)

    def test_key_is_stripped(self):
        """Test surrounding whitespace is removed from the key."""
        api = RealDebridApi("  KEY  ")
        assert api.api_key == "KEY"

    def test_from_settings(self):
        """Test settings flow into the client."""
        settings = Settings(
            api_key="KEY",
            api_url="https://example.test/rest/1.0/",
            request_timeout=5.0,
            retry_max_attempts=2,
        )
        api = RealDebridApi.from_settings(settings)
        assert api.timeout == 5.0
        assert api._base_url == "https://example.test/rest/1.0"
        assert api._retry_handler.config.max_attempts == 2

    def test_from_settings_without_key(self):
        """Test missing key in settings is a configuration error."""
        with pytest.raises(MissingCredentialsError):
            RealDebridApi.from_settings(Settings(api_key=""))


class TestRealDebridApiRequests:
    """Tests for requests and error translation."""

    @pytest.fixture
    def api(self, retry_config):
        return RealDebridApi("KEY", base_url="https://api.test", retry_config=retry_config)

    @pytest.fixture
    def mock_session(self):
        session = MagicMock()
        session.closed = False
        return session

    @pytest.mark.asyncio
    async def test_get_user(self, api, mock_session):
        """Test a user payload is parsed."""
        mock_session.request = MagicMock(return_value=_context(
            _response(json_data={"username": "alice", "premium": 100, "expiration": "2025-01-01T00:00:00.000Z"})
        ))

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            user = await api.get_user()

        assert user.username == "alice"
        assert user.premium == 100
        mock_session.request.assert_called_once_with(
            "GET", "https://api.test/user", params=None, data=None
        )

    @pytest.mark.asyncio
    async def test_list_torrents_no_content(self, api, mock_session):
        """Test 204 on an empty account is an empty page."""
        mock_session.request = MagicMock(return_value=_context(_response(status=204)))

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            result = await api.list_torrents(offset=5000, limit=5000)

        assert result == []
        assert mock_session.request.call_args.kwargs["params"] == {"offset": 5000, "limit": 5000}

    @pytest.mark.asyncio
    async def test_list_torrents(self, api, mock_session):
        """Test a listing page is parsed, ignoring unknown fields."""
        mock_session.request = MagicMock(return_value=_context(_response(json_data=[
            {"id": "A", "filename": "one", "status": "downloading", "unknown": 1},
            {"id": "B", "filename": "two", "status": "downloaded"},
        ])))

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            result = await api.list_torrents()

        assert [t.id for t in result] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_torrent_not_found(self, api, mock_session):
        """Test 404 raises TorrentNotFoundError without retrying."""
        mock_session.request = MagicMock(return_value=_context(
            _response(status=404, json_data={"error": "unknown_ressource", "error_code": 7})
        ))

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            with pytest.raises(TorrentNotFoundError) as exc_info:
                await api.get_torrent_info("ID1")

        assert exc_info.value.torrent_id == "ID1"
        assert mock_session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_unknown_resource_error_code(self, api, mock_session):
        """Test the unknown resource code is not found on any status."""
        mock_session.request = MagicMock(return_value=_context(
            _response(status=400, json_data={"error": "unknown_ressource", "error_code": 7})
        ))

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            with pytest.raises(TorrentNotFoundError):
                await api.delete_torrent("ID1")

    @pytest.mark.asyncio
    async def test_unauthorized(self, api, mock_session):
        """Test 401 raises an authentication error."""
        mock_session.request = MagicMock(return_value=_context(
            _response(status=401, json_data={"error": "bad_token", "error_code": 8})
        ))

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            with pytest.raises(DebridAuthenticationError):
                await api.get_user()

        assert mock_session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_service_unavailable_retried(self, api, mock_session):
        """Test 503 is retried up to the attempt limit."""
        mock_session.request = MagicMock(side_effect=lambda *a, **k: _context(
            _response(status=503, json_data=None)
        ))

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            with pytest.raises(DebridApiError) as exc_info:
                await api.get_user()

        assert exc_info.value.status == 503
        assert mock_session.request.call_count == 3

    @pytest.mark.asyncio
    async def test_timeout_retried(self, api, mock_session):
        """Test timeouts become DebridTimeoutError after retries."""
        mock_session.request = MagicMock(side_effect=asyncio.TimeoutError())

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            with pytest.raises(DebridTimeoutError):
                await api.get_torrent_info("ID1")

        assert mock_session.request.call_count == 3

    @pytest.mark.asyncio
    async def test_failure_counts_keyed_by_endpoint(self, api, mock_session):
        """Test failures on many torrents share one endpoint entry."""
        mock_session.request = MagicMock(side_effect=asyncio.TimeoutError())

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            for torrent_id in ("ID1", "ID2", "ID3"):
                with pytest.raises(DebridTimeoutError):
                    await api.get_torrent_info(torrent_id)

        assert api._retry_handler.get_failure_count("GET torrents/info/{id}") == 3
        assert api._retry_handler.get_failure_count("GET torrents/info/ID1") == 0
        assert list(api._retry_handler._failure_counts) == ["GET torrents/info/{id}"]

    @pytest.mark.asyncio
    async def test_connection_error(self, api, mock_session):
        """Test client errors become DebridConnectionError."""
        mock_session.request = MagicMock(
            side_effect=aiohttp.ClientConnectionError("Connection refused")
        )

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            with pytest.raises(DebridConnectionError):
                await api.get_user()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, api, mock_session):
        """Test a request succeeds once the connection recovers."""
        mock_session.request = MagicMock(side_effect=[
            aiohttp.ClientConnectionError("reset"),
            _context(_response(json_data={"username": "alice"})),
        ])

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            user = await api.get_user()

        assert user.username == "alice"
        assert mock_session.request.call_count == 2

    @pytest.mark.asyncio
    async def test_invalid_payload(self, api, mock_session):
        """Test a payload missing required fields is an API error."""
        mock_session.request = MagicMock(return_value=_context(_response(json_data={"id": 1})))

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            with pytest.raises(DebridApiError):
                await api.get_user()

    @pytest.mark.asyncio
    async def test_server_time(self, api, mock_session):
        """Test the quoted time/iso answer is parsed with its offset."""
        mock_session.request = MagicMock(return_value=_context(
            _response(text='"2024-01-01T13:00:00+0100"')
        ))

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            server_time = await api.get_server_time()

        assert server_time.utcoffset() == timedelta(hours=1)
        assert server_time.hour == 13

    @pytest.mark.asyncio
    async def test_select_files(self, api, mock_session):
        """Test file ids are sent comma separated."""
        mock_session.request = MagicMock(return_value=_context(_response(status=204)))

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            await api.select_files("ID1", ["1", "2"])

        mock_session.request.assert_called_once_with(
            "POST",
            "https://api.test/torrents/selectFiles/ID1",
            params=None,
            data={"files": "1,2"},
        )

    @pytest.mark.asyncio
    async def test_add_magnet(self, api, mock_session):
        """Test adding a magnet returns the new id."""
        mock_session.request = MagicMock(return_value=_context(
            _response(status=201, json_data={"id": "NEW1", "uri": "https://x"})
        ))

        with patch.object(api, "_get_session", AsyncMock(return_value=mock_session)):
            result = await api.add_magnet("magnet:?xt=urn:btih:abc")

        assert result.id == "NEW1"
        assert mock_session.request.call_args.kwargs["data"] == {"magnet": "magnet:?xt=urn:btih:abc"}

    @pytest.mark.asyncio
    async def test_close(self, api):
        """Test close shuts the session down."""
        session = MagicMock()
        session.closed = False
        session.close = AsyncMock()
        api._session = session

        await api.close()

        session.close.assert_called_once()
        assert api._session is None
