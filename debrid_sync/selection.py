"""
File selection policy and download link readiness.

Decides which files of a torrent are selected on the provider, and whether
the links the provider published so far cover the whole selection.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from .models import AvailableFile, DownloadAction, LocalFile, LocalTorrent

logger = logging.getLogger(__name__)

# Seconds a lone link must have been published before it is accepted as final
LINK_SETTLE_SECONDS = 60.0


def _children(node: Any) -> list:
    """Values of a JSON node. The provider sends [] where {} is expected."""
    if isinstance(node, dict):
        return list(node.values())
    if isinstance(node, list):
        return node
    return []


def flatten_available_files(index: Any) -> List[AvailableFile]:
    """
    Flatten the availability index into unique files.

    The index is keyed hash -> host -> [variant], each variant mapping a
    file id to {"filename", "filesize"}. Entries without a filename are
    skipped; duplicates by (filename, filesize) keep the first occurrence.
    """
    seen = set()
    result = []
    for hosts in _children(index):
        for variants in _children(hosts):
            for variant in _children(variants):
                for entry in _children(variant):
                    if not isinstance(entry, dict):
                        continue
                    filename = entry.get("filename")
                    if not filename:
                        continue
                    key = (filename, entry.get("filesize", 0))
                    if key in seen:
                        continue
                    seen.add(key)
                    result.append(AvailableFile(filename=filename, filesize=key[1]))
    return result


def filter_available(
    files: List[LocalFile], available: Iterable[AvailableFile]
) -> List[LocalFile]:
    """Keep files whose path ends with one of the available filenames."""
    names = [a.filename for a in available]
    return [f for f in files if any(f.path.endswith(name) for name in names)]


def filter_manual(files: List[LocalFile], patterns: Iterable[str]) -> List[LocalFile]:
    """Keep files whose path ends with one of the manual patterns."""
    patterns = list(patterns)
    return [f for f in files if any(f.path.endswith(p) for p in patterns)]


def filter_by_min_size(files: List[LocalFile], min_size_mb: int) -> List[LocalFile]:
    """Drop files at or below min_size_mb megabytes. 0 disables the filter."""
    if not min_size_mb or min_size_mb <= 0:
        return files
    min_bytes = min_size_mb * 1024 * 1024
    return [f for f in files if f.bytes > min_bytes]


def apply_regex_filters(
    files: List[LocalFile],
    include_regex: Optional[str],
    exclude_regex: Optional[str],
) -> List[LocalFile]:
    """Apply the include regex, or the exclude regex when no include is set."""
    if include_regex and include_regex.strip():
        pattern = re.compile(include_regex)
        return [f for f in files if pattern.search(f.path)]
    if exclude_regex and exclude_regex.strip():
        pattern = re.compile(exclude_regex)
        return [f for f in files if not pattern.search(f.path)]
    return files


def choose_files(
    torrent: LocalTorrent,
    available: Optional[Iterable[AvailableFile]] = None,
) -> List[LocalFile]:
    """
    Choose the files of a torrent to select on the provider.

    Args:
        torrent: Local torrent with its file list and selection settings
        available: Provider availability, used by DownloadAction.AVAILABLE_ONLY

    Returns:
        The chosen files. Never empty when the torrent has files: if the
        filters remove everything, every file is chosen instead.
    """
    files = list(torrent.files)

    if torrent.download_action == DownloadAction.AVAILABLE_ONLY:
        available = list(available or [])
        files = filter_available(files, available)
        logger.debug(
            f"Found {len(files)}/{len(torrent.files)} available files on Real-Debrid "
            f"{torrent.to_log()}"
        )
    elif torrent.download_action == DownloadAction.MANUAL:
        files = filter_manual(files, torrent.manual_files)
        logger.debug(f"Selected {len(files)} manually chosen files {torrent.to_log()}")

    if torrent.download_min_size > 0:
        files = filter_by_min_size(files, torrent.download_min_size)
        logger.debug(
            f"Found {len(files)} files over {torrent.download_min_size}MB {torrent.to_log()}"
        )

    files = apply_regex_filters(files, torrent.include_regex, torrent.exclude_regex)

    if not files:
        logger.warning(
            f"Filtered all files out! Downloading ALL files instead! {torrent.to_log()}"
        )
        files = list(torrent.files)

    return files


def links_ready(
    torrent: LocalTorrent,
    links: List[str],
    now: Optional[datetime] = None,
) -> Optional[List[str]]:
    """
    Decide whether the published links are final.

    Links are ready when their count matches the selected files or the
    manual patterns. A single link is accepted once the torrent ended more
    than LINK_SETTLE_SECONDS ago, since the provider may still be adding
    links right after it marks a torrent finished.

    Returns:
        The links when ready, otherwise None.
    """
    # Empty links are never ready, even when no file is selected and the
    # counts would match at zero.
    if not links:
        return None

    selected = sum(1 for f in torrent.files if f.selected)
    if selected == len(links) or len(torrent.manual_files) == len(links):
        logger.debug(f"Matched {len(links)} files {torrent.to_log()}")
        return links

    if len(links) == 1 and torrent.rd_ended is not None:
        now = now or datetime.now(timezone.utc)
        ended = torrent.rd_ended
        if ended.tzinfo is None:
            ended = ended.replace(tzinfo=timezone.utc)
        waited = (now - ended).total_seconds()
        logger.debug(
            f"Waiting to see if more links appear, checked for {waited:.0f} seconds "
            f"{torrent.to_log()}"
        )
        if waited > LINK_SETTLE_SECONDS:
            return links

    logger.debug(f"Did not find any suitable download links {torrent.to_log()}")
    return None
