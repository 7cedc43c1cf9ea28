"""
debrid-sync
Synchronizes Real-Debrid torrents into a local model and links finished
files out of an rclone mount.
"""

__version__ = "1.0.0"
