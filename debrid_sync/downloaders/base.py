"""
Downloader contract shared by the download strategies.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union


@dataclass(frozen=True)
class DownloadProgress:
    """Progress of a download. Units are strategy specific."""
    bytes_done: int = 0
    bytes_total: int = 0
    speed: int = 0


@dataclass(frozen=True)
class DownloadOutcome:
    """Terminal result of a download: a resolved path or an error."""
    path: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None


DownloadEvent = Union[DownloadProgress, DownloadOutcome]


class Downloader(ABC):
    """
    Base class for download strategies.

    Events are buffered in a queue from construction on, so a consumer of
    events() sees every progress update even if it attaches after
    download() started. The stream ends with exactly one DownloadOutcome.
    """

    def __init__(self):
        self._events: asyncio.Queue = asyncio.Queue()
        self.outcome: Optional[DownloadOutcome] = None

    @abstractmethod
    async def download(self) -> str:
        """Run the download and return the resulting path."""

    @abstractmethod
    async def cancel(self) -> None:
        """Request cancellation."""

    async def pause(self) -> None:
        pass

    async def resume(self) -> None:
        pass

    async def events(self) -> AsyncIterator[DownloadEvent]:
        """Yield progress updates, then the outcome."""
        while True:
            event = await self._events.get()
            yield event
            if isinstance(event, DownloadOutcome):
                return

    def _report_progress(self, bytes_done: int, bytes_total: int, speed: int) -> None:
        self._events.put_nowait(DownloadProgress(bytes_done, bytes_total, speed))

    def _report_complete(
        self,
        path: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        if self.outcome is not None:
            return
        self.outcome = DownloadOutcome(path=path, error=error)
        self._events.put_nowait(self.outcome)
