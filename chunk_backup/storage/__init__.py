"""Remote storage backends."""

from .base import RemoteFileInfo, Storage, remote_join
from .local import LocalStorage
from .rclone import RcloneStorage

__all__ = ["RemoteFileInfo", "Storage", "remote_join", "LocalStorage", "RcloneStorage"]
