from .base import Downloader, DownloadEvent, DownloadOutcome, DownloadProgress
from .symlink import SymlinkDownloader

__all__ = [
    "Downloader",
    "DownloadEvent",
    "DownloadOutcome",
    "DownloadProgress",
    "SymlinkDownloader",
]
