"""
Command Line Interface for debrid-sync
Inspect Real-Debrid torrents and link finished files from the rclone mount.
"""

import argparse
import asyncio
import logging
import sys
from typing import Awaitable, Callable, TypeVar

from .config import Settings
from .downloaders import SymlinkDownloader
from .exceptions import DebridSyncError
from .logging_config import setup_logging
from .models import LocalFile, LocalTorrent, deserialize_files
from .realdebrid_api import RealDebridApi
from .synchronizer import TorrentSynchronizer, open_session

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="debrid-sync",
        description="debrid-sync - Real-Debrid torrent synchronisation and rclone symlinking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List every torrent on the account
  debrid-sync torrents

  # Show the merged local view of one torrent
  debrid-sync info ABCDEF123456

  # Print the download links once they are complete
  debrid-sync links ABCDEF123456

  # Link a file from the rclone mount into the downloads folder
  debrid-sync symlink "Show.S01/episode.mkv" /downloads/Show.S01/episode.mkv

Environment Variables:
  DEBRID_API_KEY            - Real-Debrid API key
  DEBRID_REQUEST_TIMEOUT    - Request timeout in seconds (default: 30)
  DEBRID_RCLONE_MOUNT_PATH  - rclone mount root, trailing * searches subfolders
  DEBRID_LOG_LEVEL          - Logging level (default: INFO)
  DEBRID_LOG_FORMAT         - Log format: text or json (default: text)
        """,
    )
    parser.add_argument("--log-level", "-l", help="Log level")
    parser.add_argument(
        "--log-format", choices=["text", "json"], help="Log format: text or json"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("torrents", help="List torrents on Real-Debrid")
    subparsers.add_parser("user", help="Show the Real-Debrid account")

    info_parser = subparsers.add_parser("info", help="Show one torrent")
    info_parser.add_argument("torrent_id", help="Real-Debrid torrent id")

    links_parser = subparsers.add_parser("links", help="Show complete download links")
    links_parser.add_argument("torrent_id", help="Real-Debrid torrent id")

    symlink_parser = subparsers.add_parser(
        "symlink", help="Link a file from the rclone mount"
    )
    symlink_parser.add_argument("path", help="File path relative to the torrent")
    symlink_parser.add_argument("destination", help="Where to create the link")
    symlink_parser.add_argument("--uri", default="", help="Source link, for logging")
    symlink_parser.add_argument("--mount", help="Override the rclone mount path")

    return parser


def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    settings = Settings()
    setup_logging(
        log_level=args.log_level or settings.log_level,
        log_file=settings.log_file,
        log_format=args.log_format or settings.log_format,
        max_file_size_mb=settings.log_max_size_mb,
        backup_count=settings.log_backup_count,
    )

    commands = {
        "torrents": run_torrents,
        "user": run_user,
        "info": run_info,
        "links": run_links,
        "symlink": run_symlink,
    }

    try:
        asyncio.run(commands[args.command](args, settings))
    except DebridSyncError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}")
        sys.exit(1)


async def _with_synchronizer(
    settings: Settings, operation: Callable[[TorrentSynchronizer], Awaitable[T]]
) -> T:
    api = RealDebridApi.from_settings(settings)
    try:
        session = await open_session(api)
        return await operation(TorrentSynchronizer(session))
    finally:
        await api.close()


async def _load_torrent(synchronizer: TorrentSynchronizer, torrent_id: str) -> LocalTorrent:
    """Build a local view of a remote torrent."""
    torrent = LocalTorrent(hash="", rd_id=torrent_id)
    await synchronizer.update_local_from_remote(torrent)
    torrent.files = [
        LocalFile(id=f.id, path=f.path, bytes=f.bytes, selected=f.selected)
        for f in deserialize_files(torrent.rd_files)
    ]
    return torrent


async def run_torrents(args, settings: Settings):
    """List torrents."""
    torrents = await _with_synchronizer(settings, lambda s: s.get_torrents())

    if not torrents:
        print("No torrents found.")
        return

    print(f"\nFound {len(torrents)} torrent(s):\n")
    print(f"{'ID':<15} {'Name':<40} {'Size':>10} {'Progress':>8} {'Status':<25}")
    print("-" * 102)

    for t in torrents:
        size_str = f"{t.bytes / 1e6:.1f}MB" if t.bytes < 1e9 else f"{t.bytes / 1e9:.2f}GB"
        name = t.filename[:37] + "..." if len(t.filename) > 40 else t.filename
        print(f"{t.id:<15} {name:<40} {size_str:>10} {t.progress:>7.0f}% {t.status:<25}")


async def run_user(args, settings: Settings):
    """Show the account."""
    user = await _with_synchronizer(settings, lambda s: s.get_user())
    print(f"  Username: {user.username}")
    if user.expiration:
        print(f"  Premium until: {user.expiration.isoformat()}")
    else:
        print("  Premium: no")


async def run_info(args, settings: Settings):
    """Show one torrent."""
    torrent = await _with_synchronizer(
        settings, lambda s: _load_torrent(s, args.torrent_id)
    )

    print(f"  Name: {torrent.rd_name}")
    print(f"  Size: {torrent.rd_size}")
    print(f"  Status: {torrent.rd_status_raw} ({torrent.rd_status.value if torrent.rd_status else 'unknown'})")
    print(f"  Progress: {torrent.rd_progress}")
    print(f"  Added: {torrent.rd_added}")
    print(f"  Ended: {torrent.rd_ended}")
    for f in torrent.files:
        marker = "*" if f.selected else " "
        print(f"  {marker} {f.id:>4} {f.path} ({f.bytes}b)")


async def run_links(args, settings: Settings):
    """Show download links once complete."""

    async def fetch(synchronizer: TorrentSynchronizer):
        torrent = await _load_torrent(synchronizer, args.torrent_id)
        return await synchronizer.get_download_links(torrent)

    links = await _with_synchronizer(settings, fetch)
    if links is None:
        print("Download links are not complete yet.")
        return
    for link in links:
        print(link)


async def run_symlink(args, settings: Settings):
    """Link one file from the rclone mount."""
    if args.mount:
        settings.rclone_mount_path = args.mount

    downloader = SymlinkDownloader.from_settings(
        args.uri or args.path, args.destination, args.path, settings
    )
    path = await downloader.download()
    print(f"  Linked {args.destination} -> {path}")


if __name__ == "__main__":
    main()
