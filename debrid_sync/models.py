"""
Domain model for debrid-sync.
Remote snapshots fetched from the provider, the locally tracked torrent,
and the provider status normalisation.
"""

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List


class TorrentStatus(Enum):
    """Normalized torrent status."""
    PROCESSING = "processing"
    WAITING_FOR_FILE_SELECTION = "waiting_for_file_selection"
    DOWNLOADING = "downloading"
    FINISHED = "finished"
    UPLOADING = "uploading"
    ERROR = "error"


class DownloadAction(Enum):
    """Which files of a torrent get selected on the provider."""
    ALL = "all"
    AVAILABLE_ONLY = "available_only"
    MANUAL = "manual"


# Raw provider status -> normalized status
RAW_STATUS_MAP = {
    "magnet_error": TorrentStatus.ERROR,
    "magnet_conversion": TorrentStatus.PROCESSING,
    "waiting_files_selection": TorrentStatus.WAITING_FOR_FILE_SELECTION,
    "queued": TorrentStatus.DOWNLOADING,
    "downloading": TorrentStatus.DOWNLOADING,
    "downloaded": TorrentStatus.FINISHED,
    "error": TorrentStatus.ERROR,
    "virus": TorrentStatus.ERROR,
    "dead": TorrentStatus.ERROR,
    "compressing": TorrentStatus.DOWNLOADING,
    "uploading": TorrentStatus.UPLOADING,
}

# Raw status recorded when the provider no longer knows a torrent
DELETED_RAW_STATUS = "deleted"


def normalize_status(raw_status: Optional[str]) -> TorrentStatus:
    """Map a raw provider status to a TorrentStatus. Unknown values are errors."""
    return RAW_STATUS_MAP.get(raw_status, TorrentStatus.ERROR)


_TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a provider ISO 8601 timestamp ("...Z", "+01:00" or "+0100")."""
    if not value:
        return None
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class RemoteFile:
    """A file inside a torrent as reported by the provider."""
    id: int
    path: str
    bytes: int
    selected: bool = False


@dataclass
class RemoteTorrent:
    """Torrent snapshot fetched from the provider. Built fresh on every call."""
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
    added: Optional[datetime] = None
    ended: Optional[datetime] = None
    files: List[RemoteFile] = field(default_factory=list)
    links: Optional[List[str]] = None
    speed: Optional[int] = None
    seeders: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        """True when the snapshot carries the detail-only fields."""
        return bool(self.filename) and self.ended is not None


@dataclass
class RemoteUser:
    """Provider account."""
    username: str
    expiration: Optional[datetime] = None


@dataclass(frozen=True)
class AvailableFile:
    """A file the provider already holds for a content hash."""
    filename: str
    filesize: int


@dataclass
class LocalFile:
    """A file of a locally tracked torrent."""
    id: int
    path: str
    bytes: int
    selected: bool = False


@dataclass
class LocalTorrent:
    """
    Locally tracked torrent.
    Owned by the caller; the synchronizer only mutates the rd_* fields.
    """
    hash: str
    rd_id: Optional[str] = None
    rd_name: Optional[str] = None
    rd_size: Optional[int] = None
    rd_files: Optional[str] = None  # JSON snapshot of the remote file list
    rd_host: Optional[str] = None
    rd_split: Optional[int] = None
    rd_progress: Optional[float] = None
    rd_added: Optional[datetime] = None
    rd_ended: Optional[datetime] = None
    rd_speed: Optional[int] = None
    rd_seeders: Optional[int] = None
    rd_status_raw: Optional[str] = None
    rd_status: Optional[TorrentStatus] = None

    # Selection settings
    download_action: DownloadAction = DownloadAction.ALL
    download_min_size: int = 0  # MB
    include_regex: Optional[str] = None
    exclude_regex: Optional[str] = None
    manual_files: List[str] = field(default_factory=list)

    files: List[LocalFile] = field(default_factory=list)

    def to_log(self) -> str:
        """Short identity used in log lines."""
        return f"(id: {self.rd_id}, name: {self.rd_name}, hash: {self.hash})"


def serialize_files(files: List[RemoteFile]) -> str:
    """Serialize a remote file list for LocalTorrent.rd_files."""
    return json.dumps([asdict(f) for f in files])


def deserialize_files(snapshot: Optional[str]) -> List[RemoteFile]:
    """Inverse of serialize_files. A missing snapshot is an empty list."""
    if not snapshot:
        return []
    return [RemoteFile(**item) for item in json.loads(snapshot)]
