"""
Real-Debrid REST Client
Thin aiohttp wrapper around the Real-Debrid API v1.0 endpoints used for
torrent synchronisation. Responses are validated with pydantic models.

API Documentation: https://api.real-debrid.com/
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, List, Optional, Type, TypeVar

import aiohttp
from pydantic import BaseModel, ConfigDict, ValidationError

from .config import Settings
from .exceptions import (
    DebridApiError,
    DebridAuthenticationError,
    DebridConnectionError,
    DebridTimeoutError,
    MissingCredentialsError,
    TorrentNotFoundError,
)
from .models import parse_timestamp
from .retry import RateLimiter, RetryConfig, RetryHandler

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.real-debrid.com/rest/1.0"

# Provider error code for "unknown_ressource"
ERROR_CODE_UNKNOWN_RESOURCE = 7

M = TypeVar("M", bound=BaseModel)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TorrentFilePayload(_Payload):
    id: int
    path: str
    bytes: int = 0
    selected: int = 0


class TorrentPayload(_Payload):
    id: str
    filename: str = ""
    original_filename: str = ""
    hash: str = ""
    bytes: int = 0
    original_bytes: int = 0
    host: str = ""
    split: int = 0
    progress: float = 0.0
    status: str = ""
    added: Optional[str] = None
    ended: Optional[str] = None
    files: Optional[List[TorrentFilePayload]] = None
    links: Optional[List[str]] = None
    speed: Optional[int] = None
    seeders: Optional[int] = None


class UserPayload(_Payload):
    username: str
    email: str = ""
    type: str = ""
    premium: int = 0  # Seconds of premium left
    expiration: Optional[str] = None


class AddTorrentPayload(_Payload):
    id: str
    uri: str = ""


class UnrestrictPayload(_Payload):
    id: Optional[str] = None
    filename: Optional[str] = None
    filesize: int = 0
    link: Optional[str] = None
    host: Optional[str] = None
    download: Optional[str] = None


class RealDebridApi:
    """
    Client for the Real-Debrid REST API.

    Every request is rate limited and retried on transport failures.
    The API key is required up front; a missing key is a configuration
    error and never retried.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        if not api_key or not api_key.strip():
            raise MissingCredentialsError("Real-Debrid API Key not set in the settings")

        self.api_key = api_key.strip()
        self.timeout = timeout
        self._base_url = base_url.rstrip("/")

        self._session: Optional[aiohttp.ClientSession] = None
        self._retry_handler = RetryHandler(retry_config or RetryConfig())
        self._rate_limiter = rate_limiter or RateLimiter()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RealDebridApi":
        """Build a client from application settings."""
        return cls(
            api_key=settings.api_key,
            base_url=settings.api_url,
            timeout=settings.request_timeout,
            retry_config=RetryConfig(
                max_attempts=settings.retry_max_attempts,
                initial_delay=settings.retry_initial_delay,
                max_delay=settings.retry_max_delay,
            ),
            rate_limiter=RateLimiter(
                rate=settings.rate_limit_per_second,
                burst=settings.rate_limit_burst,
            ),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self):
        """Close the client connection."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        data: Any = None,
        resource_id: Optional[str] = None,
        raw: bool = False,
    ) -> Any:
        """Make a rate limited, retried request to the API."""

        async def do_request():
            await self._rate_limiter.acquire()
            return await self._send(method, endpoint, params, data, resource_id, raw)

        # Failure counts are kept per endpoint, not per torrent.
        template = endpoint.replace(resource_id, "{id}") if resource_id else endpoint
        return await self._retry_handler.with_retry(
            operation=do_request,
            operation_id=f"{method} {template}",
        )

    async def _send(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict],
        data: Any,
        resource_id: Optional[str],
        raw: bool,
    ) -> Any:
        """Perform a single HTTP round-trip."""
        session = await self._get_session()
        url = f"{self._base_url}/{endpoint}"

        try:
            async with session.request(method, url, params=params, data=data) as response:
                if response.status == 204:
                    return None

                if response.status >= 400:
                    try:
                        payload = await response.json(content_type=None)
                    except ValueError:
                        payload = None
                    self._raise_for_error(response.status, payload, endpoint, resource_id)

                if raw:
                    return await response.text()

                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise DebridApiError(
                        f"Invalid JSON from {endpoint}", status=response.status, details=str(e)
                    ) from e

        except asyncio.TimeoutError as e:
            logger.warning(f"Real-Debrid request {method} {endpoint} timed out after {self.timeout}s")
            raise DebridTimeoutError(
                "The connection to Real-Debrid has timed out", f"{method} {endpoint}"
            ) from e
        except aiohttp.ClientError as e:
            logger.warning(f"Real-Debrid request {method} {endpoint} failed: {e}")
            raise DebridConnectionError(
                "The connection to Real-Debrid has failed", str(e)
            ) from e

    def _raise_for_error(
        self,
        status: int,
        payload: Any,
        endpoint: str,
        resource_id: Optional[str],
    ) -> None:
        """Translate an error response into an exception."""
        error = None
        error_code = None
        if isinstance(payload, dict):
            error = payload.get("error")
            error_code = payload.get("error_code")

        if status == 404 or error_code == ERROR_CODE_UNKNOWN_RESOURCE:
            raise TorrentNotFoundError(resource_id or endpoint)

        if status in (401, 403):
            raise DebridAuthenticationError(
                f"Real-Debrid rejected the request to {endpoint}",
                error or f"HTTP {status}",
            )

        raise DebridApiError(
            f"Real-Debrid API error on {endpoint}",
            status=status,
            error_code=error_code,
            details=error or f"HTTP {status}",
        )

    @staticmethod
    def _parse(model: Type[M], payload: Any, endpoint: str) -> M:
        """Validate a JSON payload into a model."""
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise DebridApiError(
                f"Unexpected response from {endpoint}", details=str(e)
            ) from e

    async def get_server_time(self) -> datetime:
        """Get the provider's local time, including its UTC offset."""
        text = await self._request("GET", "time/iso", raw=True)
        value = (text or "").strip().strip('"')
        try:
            server_time = parse_timestamp(value)
        except ValueError as e:
            raise DebridApiError("Invalid server time", details=value) from e
        if server_time is None:
            raise DebridApiError("Empty server time response")
        return server_time

    async def get_user(self) -> UserPayload:
        """Get the authenticated account."""
        payload = await self._request("GET", "user")
        return self._parse(UserPayload, payload, "user")

    async def list_torrents(self, offset: int = 0, limit: int = 100) -> List[TorrentPayload]:
        """Get one page of the torrent listing."""
        payload = await self._request(
            "GET", "torrents", params={"offset": offset, "limit": limit}
        )
        if not payload:
            return []
        return [self._parse(TorrentPayload, item, "torrents") for item in payload]

    async def get_torrent_info(self, torrent_id: str) -> TorrentPayload:
        """Get the full detail of one torrent."""
        payload = await self._request(
            "GET", f"torrents/info/{torrent_id}", resource_id=torrent_id
        )
        return self._parse(TorrentPayload, payload, "torrents/info")

    async def add_magnet(self, magnet_link: str) -> AddTorrentPayload:
        """Add a torrent by magnet link."""
        payload = await self._request(
            "POST", "torrents/addMagnet", data={"magnet": magnet_link}
        )
        return self._parse(AddTorrentPayload, payload, "torrents/addMagnet")

    async def add_torrent_file(self, torrent_file: bytes) -> AddTorrentPayload:
        """Add a torrent by uploading the .torrent file."""
        payload = await self._request("PUT", "torrents/addTorrent", data=torrent_file)
        return self._parse(AddTorrentPayload, payload, "torrents/addTorrent")

    async def instant_availability(self, torrent_hash: str) -> Any:
        """Get the raw availability index for a content hash."""
        return await self._request(
            "GET", f"torrents/instantAvailability/{torrent_hash}", resource_id=torrent_hash
        )

    async def select_files(self, torrent_id: str, file_ids: List[str]) -> None:
        """Select which files of a torrent the provider downloads."""
        await self._request(
            "POST",
            f"torrents/selectFiles/{torrent_id}",
            data={"files": ",".join(file_ids)},
            resource_id=torrent_id,
        )

    async def delete_torrent(self, torrent_id: str) -> None:
        """Delete a torrent from the provider."""
        await self._request(
            "DELETE", f"torrents/delete/{torrent_id}", resource_id=torrent_id
        )

    async def unrestrict_link(self, link: str) -> UnrestrictPayload:
        """Turn a hoster link into a direct download URL."""
        payload = await self._request("POST", "unrestrict/link", data={"link": link})
        return self._parse(UnrestrictPayload, payload, "unrestrict/link")
