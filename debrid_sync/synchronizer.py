"""
Torrent Synchronizer
Pulls torrent state from Real-Debrid into the local model, submits file
selections and decides when download links are complete.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .exceptions import DebridApiError, DebridTimeoutError, TorrentNotFoundError, TransportError, UnrestrictError
from .logging_config import LogContext
from .models import (
    DELETED_RAW_STATUS,
    AvailableFile,
    DownloadAction,
    LocalFile,
    LocalTorrent,
    RemoteFile,
    RemoteTorrent,
    RemoteUser,
    normalize_status,
    parse_timestamp,
    serialize_files,
)
from .realdebrid_api import RealDebridApi, TorrentPayload
from .selection import choose_files, flatten_available_files, links_ready

logger = logging.getLogger(__name__)

PAGE_SIZE = 5000


@contextmanager
def _logged_transport_errors(
    operation: str,
    torrent: Optional[LocalTorrent] = None,
    torrent_id: Optional[str] = None,
):
    """Log transport failures with the torrent identity, then re-raise."""
    context = {"operation": operation}
    identity = ""
    if torrent_id is not None:
        context["torrent_id"] = torrent_id
        identity = f" (id: {torrent_id})"
    if torrent is not None:
        context.update(
            torrent_id=torrent.rd_id,
            torrent_name=torrent.rd_name,
            torrent_hash=torrent.hash,
        )
        identity = f" {torrent.to_log()}"

    with LogContext(**context):
        try:
            yield
        except DebridTimeoutError as e:
            logger.error(f"The connection to Real-Debrid has timed out during {operation}: {e}{identity}")
            raise
        except TransportError as e:
            logger.error(f"The connection to Real-Debrid has failed during {operation}: {e}{identity}")
            raise


@dataclass(frozen=True)
class DebridSession:
    """An API client paired with the provider's clock offset."""
    api: RealDebridApi
    clock_offset: Optional[timedelta] = None

    def change_timezone(self, value: Optional[datetime]) -> Optional[datetime]:
        """
        Correct a provider timestamp.

        The provider reports its local wall time stamped as UTC; shift it
        back by the server offset and express it in the server's zone.
        """
        if value is None or self.clock_offset is None:
            return value
        return (value - self.clock_offset).astimezone(timezone(self.clock_offset))


async def open_session(api: RealDebridApi) -> DebridSession:
    """Query the server time once and bind its offset to the client."""
    with _logged_transport_errors("server time"):
        server_time = await api.get_server_time()
    offset = server_time.utcoffset()
    logger.debug(f"Real-Debrid server time {server_time.isoformat()}, offset {offset}")
    return DebridSession(api=api, clock_offset=offset)


class TorrentSynchronizer:
    """
    Synchronizes Real-Debrid torrents into LocalTorrent records.
    Stateless apart from the session it is given.
    """

    def __init__(self, session: DebridSession):
        self.session = session

    @property
    def api(self) -> RealDebridApi:
        return self.session.api

    def _timestamp(self, value: Optional[str], owner: str) -> Optional[datetime]:
        """Parse and correct a provider timestamp. Malformed values are API errors."""
        try:
            parsed = parse_timestamp(value)
        except ValueError as e:
            raise DebridApiError(f"Invalid timestamp from Real-Debrid for {owner}", details=value) from e
        return self.session.change_timezone(parsed)

    def map_torrent(self, payload: TorrentPayload) -> RemoteTorrent:
        """Map a provider payload to a RemoteTorrent with corrected timestamps."""
        return RemoteTorrent(
            id=payload.id,
            filename=payload.filename,
            original_filename=payload.original_filename,
            hash=payload.hash,
            bytes=payload.bytes,
            original_bytes=payload.original_bytes,
            host=payload.host,
            split=payload.split,
            progress=payload.progress,
            status=payload.status,
            added=self._timestamp(payload.added, payload.id),
            ended=self._timestamp(payload.ended, payload.id),
            files=[
                RemoteFile(id=f.id, path=f.path, bytes=f.bytes, selected=bool(f.selected))
                for f in payload.files or []
            ],
            links=payload.links,
            speed=payload.speed,
            seeders=payload.seeders,
        )

    async def get_torrents(self) -> List[RemoteTorrent]:
        """Get every torrent on the account, in provider order."""
        results: List[TorrentPayload] = []
        offset = 0

        with _logged_transport_errors("list torrents"):
            while True:
                page = await self.api.list_torrents(offset=offset, limit=PAGE_SIZE)
                results.extend(page)
                if len(page) < PAGE_SIZE:
                    break
                offset += PAGE_SIZE

        logger.debug(f"Fetched {len(results)} torrents from Real-Debrid")
        return [self.map_torrent(p) for p in results]

    async def get_user(self) -> RemoteUser:
        """Get the account, with an expiration only while premium."""
        with _logged_transport_errors("get user"):
            user = await self.api.get_user()
        expiration = None
        if user.premium > 0:
            expiration = self._timestamp(user.expiration, user.username)
        return RemoteUser(username=user.username, expiration=expiration)

    async def add_magnet(self, magnet_link: str) -> str:
        """Add a magnet link; returns the provider torrent id."""
        with _logged_transport_errors("add magnet"):
            result = await self.api.add_magnet(magnet_link)
        logger.info(f"Added magnet to Real-Debrid as {result.id}")
        return result.id

    async def add_file(self, torrent_file: bytes) -> str:
        """Add a .torrent file; returns the provider torrent id."""
        with _logged_transport_errors("add file"):
            result = await self.api.add_torrent_file(torrent_file)
        logger.info(f"Added torrent file ({len(torrent_file)} bytes) to Real-Debrid as {result.id}")
        return result.id

    async def get_available_files(self, torrent_hash: str) -> List[AvailableFile]:
        """Get the unique files the provider already holds for a hash."""
        with _logged_transport_errors("instant availability"):
            index = await self.api.instant_availability(torrent_hash)
        return flatten_available_files(index)

    async def get_info(self, torrent_id: str) -> RemoteTorrent:
        """Get one torrent. Raises TorrentNotFoundError if the provider lost it."""
        with _logged_transport_errors("torrent info", torrent_id=torrent_id):
            payload = await self.api.get_torrent_info(torrent_id)
        return self.map_torrent(payload)

    async def select_files(self, torrent: LocalTorrent) -> List[LocalFile]:
        """Choose files per the torrent's settings and submit them."""
        if torrent.rd_id is None:
            raise ValueError(f"Torrent has no Real-Debrid id {torrent.to_log()}")

        logger.debug(f"Selecting files {torrent.to_log()}")

        available = None
        if torrent.download_action == DownloadAction.AVAILABLE_ONLY:
            logger.debug(f"Determining which files are already available on Real-Debrid {torrent.to_log()}")
            available = await self.get_available_files(torrent.hash)

        files = choose_files(torrent, available)

        logger.debug(f"Selecting files: {torrent.to_log()}")
        for file in files:
            logger.debug(f"{file.id}: {file.path} ({file.bytes}b)")

        with _logged_transport_errors("select files", torrent):
            await self.api.select_files(torrent.rd_id, [str(f.id) for f in files])

        return files

    async def delete(self, torrent_id: str) -> None:
        """Delete a torrent from the provider."""
        with _logged_transport_errors("delete", torrent_id=torrent_id):
            await self.api.delete_torrent(torrent_id)

    async def unrestrict(self, link: str) -> str:
        """Resolve a hoster link to a direct download URL."""
        with _logged_transport_errors("unrestrict"):
            result = await self.api.unrestrict_link(link)
        if not result.download:
            raise UnrestrictError(link)
        return result.download

    async def update_local_from_remote(
        self,
        torrent: LocalTorrent,
        remote: Optional[RemoteTorrent] = None,
    ) -> LocalTorrent:
        """
        Merge the remote state of a torrent into its local record.

        A listing snapshot lacks the detail fields, so incomplete or missing
        snapshots are refetched. A torrent the provider no longer knows is
        marked with the "deleted" raw status instead of raising.
        """
        if torrent.rd_id is None:
            return torrent

        try:
            if remote is None or not remote.is_complete:
                remote = await self.get_info(torrent.rd_id)
        except TorrentNotFoundError:
            logger.info(f"Torrent no longer exists on Real-Debrid {torrent.to_log()}")
            torrent.rd_status_raw = DELETED_RAW_STATUS
            return torrent

        torrent.rd_name = remote.filename if remote.filename and remote.filename.strip() else remote.original_filename
        torrent.rd_size = remote.bytes if remote.bytes > 0 else remote.original_bytes

        if remote.files:
            torrent.rd_files = serialize_files(remote.files)

        torrent.rd_host = remote.host
        torrent.rd_split = remote.split
        torrent.rd_progress = remote.progress
        torrent.rd_added = remote.added
        torrent.rd_ended = remote.ended
        torrent.rd_speed = remote.speed
        torrent.rd_seeders = remote.seeders
        torrent.rd_status_raw = remote.status
        torrent.rd_status = normalize_status(remote.status)

        return torrent

    async def get_download_links(self, torrent: LocalTorrent) -> Optional[List[str]]:
        """
        Get the download links of a torrent once they are complete.

        Returns:
            The non-empty links, or None when the caller should poll again.
        """
        if torrent.rd_id is None:
            return None

        remote = await self.get_info(torrent.rd_id)
        if not remote.links:
            return None

        links = [link for link in remote.links if link and link.strip()]
        logger.debug(f"Found {len(links)} links {torrent.to_log()}")
        for link in links:
            logger.debug(f"{link} {torrent.to_log()}")

        selected = sum(1 for f in torrent.files if f.selected)
        logger.debug(
            f"Torrent has {selected} selected files out of {len(torrent.files)} files, "
            f"found {len(links)} links, torrent ended: {torrent.rd_ended} {torrent.to_log()}"
        )

        return links_ready(torrent, links)
