"""tagsync - tag-scoped two-way sync between a Markdown vault and remote storage."""

from .api import RemoteClient
from .config import Config, Settings
from .exceptions import (
    ConfigError,
    CursorResetError,
    RemoteAPIError,
    RemoteAuthenticationError,
    RemoteInvalidResponseError,
    RemoteRateLimitError,
    RemoteUnreachableError,
    TagSyncError,
)
from .paths import normalize_local_path, to_local_path, to_remote_path

__all__ = [
    "RemoteClient",
    "Config",
    "Settings",
    "TagSyncError",
    "ConfigError",
    "CursorResetError",
    "RemoteAPIError",
    "RemoteAuthenticationError",
    "RemoteInvalidResponseError",
    "RemoteRateLimitError",
    "RemoteUnreachableError",
    "normalize_local_path",
    "to_local_path",
    "to_remote_path",
]
