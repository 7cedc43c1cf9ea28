"""
Symlink Downloader
Instead of downloading, finds the file inside an rclone mount of the
provider's storage and links it into the download folder.
"""

import asyncio
import logging
import os
from pathlib import PurePath
from typing import List, Optional, Tuple

import aiofiles.os

from ..config import Settings
from ..exceptions import (
    DownloadCancelledError,
    LinkTargetNotFoundError,
    MountNotFoundError,
    SymlinkCreationError,
    UnsupportedFileError,
)
from ..logging_config import LogContext
from .base import Downloader

logger = logging.getLogger(__name__)

MAX_RETRIES = 10

# Archives need extracting, which a link cannot do
UNSUPPORTED_EXTENSIONS = (".zip", ".rar", ".tar")


def resolve_mount_path(mount_path: str) -> Tuple[str, bool]:
    """
    Split a configured mount path into the root and the subdirectory flag.

    A trailing "*" (e.g. "/mnt/rd/*") also searches the immediate
    subdirectories of the root.
    """
    path = mount_path.rstrip("\\/")
    search_subdirectories = path.endswith("*")
    path = path.rstrip("*").rstrip("\\/")
    return path, search_subdirectories


def candidate_subpaths(mount_root: str, relative_path: str) -> List[str]:
    """
    Subdirectories of a search root that may hold the file, in priority order.

    Walks from the file's expected directory up to the mount root
    collecting directory names, then adds the file name, the file name
    without extension and the root itself ("").
    """
    file_name = PurePath(relative_path).name
    stem = PurePath(file_name).stem

    root = os.path.normpath(mount_root)
    directory = os.path.normpath(os.path.join(root, os.path.dirname(relative_path)))

    candidates = []
    while directory != root:
        parent = os.path.dirname(directory)
        if parent == directory:
            break
        candidates.append(os.path.basename(directory))
        directory = parent

    candidates.extend([file_name, stem, ""])
    return list(dict.fromkeys(candidates))


class SymlinkDownloader(Downloader):
    """
    Resolves a torrent file inside the rclone mount and symlinks it.

    The mount may lag behind the provider, so the search is retried with
    a delay that grows linearly with the attempt number.
    """

    def __init__(
        self,
        uri: str,
        destination_path: str,
        path: str,
        mount_path: str,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = 1.0,
    ):
        super().__init__()
        self.uri = uri
        self.destination_path = destination_path
        self.path = path
        self.mount_path = mount_path
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._cancelled = False

    @classmethod
    def from_settings(
        cls, uri: str, destination_path: str, path: str, settings: Settings
    ) -> "SymlinkDownloader":
        return cls(
            uri,
            destination_path,
            path,
            mount_path=settings.rclone_mount_path,
            max_retries=settings.symlink_max_retries,
            retry_delay=settings.symlink_retry_delay,
        )

    async def download(self) -> str:
        """
        Find the file in the mount and link it to the destination path.

        Returns:
            The physical path the link points at

        Raises:
            UnsupportedFileError, MountNotFoundError, LinkTargetNotFoundError,
            SymlinkCreationError or DownloadCancelledError. The same error is
            also reported as the download outcome.
        """
        logger.debug(f"Starting symlink resolving of {self.uri}, writing to path: {self.destination_path}")
        self._report_progress(0, 0, 0)

        try:
            with LogContext(path=self.path):
                found = await self._resolve()
        except asyncio.CancelledError:
            self._report_complete(error=DownloadCancelledError("Symlink download cancelled", self.path))
            raise
        except Exception as e:
            self._report_complete(error=e)
            raise

        self._report_complete(path=found)
        return found

    async def _resolve(self) -> str:
        file_name = PurePath(self.path).name
        extension = PurePath(file_name).suffix.lower()

        if extension in UNSUPPORTED_EXTENSIONS:
            raise UnsupportedFileError(self.path, extension)

        mount_root, search_subdirectories = resolve_mount_path(self.mount_path)

        if not mount_root or not await aiofiles.os.path.isdir(mount_root):
            raise MountNotFoundError(mount_root or self.mount_path)

        candidates = candidate_subpaths(mount_root, self.path)
        found = await self._find_file_in_mount(
            mount_root, candidates, file_name, search_subdirectories
        )

        if found is None:
            await self._log_available_directories(mount_root)
            raise LinkTargetNotFoundError(file_name, self.max_retries)

        logger.debug(f"Creating symbolic link from {found} to {self.destination_path}")
        await self._create_symbolic_link(found, self.destination_path)
        return found

    async def cancel(self) -> None:
        """Stop searching. Takes effect before the next attempt."""
        self._cancelled = True

    async def _find_file_in_mount(
        self,
        mount_root: str,
        candidates: List[str],
        file_name: str,
        search_subdirectories: bool,
    ) -> Optional[str]:
        for attempt in range(self.max_retries):
            if self._cancelled:
                raise DownloadCancelledError("Symlink download cancelled", self.path)

            self._report_progress(attempt, self.max_retries, 1)
            logger.debug(f"Searching {mount_root} for {file_name} (attempt #{attempt})...")

            found = await self._find_file(mount_root, candidates, file_name)
            if found:
                return found

            if search_subdirectories:
                for subdirectory in await self._list_subdirectories(mount_root):
                    found = await self._find_file(subdirectory, candidates, file_name)
                    if found:
                        return found

            if attempt < self.max_retries - 1:
                await asyncio.sleep(attempt * self.retry_delay)

        return None

    async def _find_file(
        self, root: str, candidates: List[str], file_name: str
    ) -> Optional[str]:
        for candidate in candidates:
            potential_path = os.path.join(root, candidate, file_name)
            if await aiofiles.os.path.isfile(potential_path):
                return potential_path
        return None

    async def _list_subdirectories(self, root: str) -> List[str]:
        subdirectories = []
        for name in sorted(await aiofiles.os.listdir(root)):
            full_path = os.path.join(root, name)
            if await aiofiles.os.path.isdir(full_path):
                subdirectories.append(full_path)
        return subdirectories

    async def _create_symbolic_link(self, source: str, destination: str) -> None:
        try:
            parent = os.path.dirname(destination)
            if parent:
                await aiofiles.os.makedirs(parent, exist_ok=True)
            await aiofiles.os.symlink(source, destination)
        except OSError as e:
            logger.error(f"Error creating symbolic link from {source} to {destination}: {e}")
            raise SymlinkCreationError(source, destination, str(e)) from e

        if not await aiofiles.os.path.exists(destination):
            logger.error(f"Failed to create symbolic link from {source} to {destination}")
            raise SymlinkCreationError(source, destination, "link missing after creation")

        logger.info(f"Created symbolic link from {source} to {destination}")

    async def _log_available_directories(self, mount_root: str) -> None:
        try:
            lines = []
            for name in sorted(await aiofiles.os.listdir(mount_root)):
                full_path = os.path.join(mount_root, name)
                if await aiofiles.os.path.isdir(full_path):
                    lines.append(f"{name}/")
                    for child in sorted(await aiofiles.os.listdir(full_path)):
                        lines.append(f"  {child}")
                else:
                    lines.append(name)
        except OSError as e:
            logger.error(f"Error listing directories in {mount_root}: {e}")
            return

        listing = "\n".join(lines) or "(empty)"
        logger.warning(
            f"Unable to find file in rclone mount. Folders available in {mount_root}:\n{listing}"
        )
