"""
Custom exception hierarchy for debrid-sync.
Provides specific exception types for better error handling and debugging.
"""


class DebridSyncError(Exception):
    """Base exception for all debrid-sync errors."""

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


# Configuration errors
class ConfigurationError(DebridSyncError):
    """Raised when there's a configuration problem."""

    pass


class MissingCredentialsError(ConfigurationError):
    """Raised when the provider API key is missing."""

    pass


# Provider client errors
class DebridClientError(DebridSyncError):
    """Base exception for provider API errors."""

    pass


class TransportError(DebridClientError):
    """Raised when a request never produced a usable response."""

    pass


class DebridConnectionError(TransportError):
    """Raised when connection to the provider fails."""

    pass


class DebridTimeoutError(TransportError):
    """Raised when a request to the provider times out."""

    pass


class DebridAuthenticationError(DebridClientError):
    """Raised when the provider rejects the API key."""

    pass


class DebridApiError(DebridClientError):
    """Raised when the provider answers with an error status."""

    def __init__(
        self,
        message: str,
        status: int = 0,
        error_code: int | None = None,
        details: str | None = None,
    ):
        super().__init__(message, details)
        self.status = status
        self.error_code = error_code


class TorrentNotFoundError(DebridClientError):
    """Raised when a torrent is not known to the provider."""

    def __init__(self, torrent_id: str, message: str | None = None):
        super().__init__(message or f"Torrent not found: {torrent_id}")
        self.torrent_id = torrent_id


NotFoundError = TorrentNotFoundError


class UnrestrictError(DebridClientError):
    """Raised when a hosted link cannot be turned into a download URL."""

    def __init__(self, link: str, message: str | None = None):
        super().__init__(message or "Unrestrict returned an invalid download", link)
        self.link = link


# Download errors
class DownloadError(DebridSyncError):
    """Base exception for download errors."""

    pass


class UnsupportedFileError(DownloadError):
    """Raised when a downloader cannot handle the requested file type."""

    def __init__(self, path: str, extension: str):
        super().__init__(f"Cannot handle {extension} files with symlink downloader", path)
        self.path = path
        self.extension = extension


class DownloadCancelledError(DownloadError):
    """Raised when a download is cancelled before it finished."""

    pass


class FilesystemError(DownloadError):
    """Base exception for local filesystem failures during a download."""

    pass


class MountNotFoundError(FilesystemError):
    """Raised when the configured mount root does not exist."""

    def __init__(self, mount_path: str):
        super().__init__(f"Mount path {mount_path} does not exist")
        self.mount_path = mount_path


class LinkTargetNotFoundError(FilesystemError):
    """Raised when the file never appeared in the mount."""

    def __init__(self, file_name: str, attempts: int):
        super().__init__(
            f"Could not find {file_name} in mount after {attempts} attempts"
        )
        self.file_name = file_name
        self.attempts = attempts


class SymlinkCreationError(FilesystemError):
    """Raised when a symbolic link could not be created or verified."""

    def __init__(self, source: str, destination: str, details: str | None = None):
        super().__init__(
            f"Could not create symbolic link from {source} to {destination}",
            details,
        )
        self.source = source
        self.destination = destination


# Resilience errors
class RateLimitTimeoutError(DebridSyncError):
    """Raised when rate limiter times out waiting for a token."""

    def __init__(self, message: str, timeout: float | None = None):
        super().__init__(message)
        self.timeout = timeout
