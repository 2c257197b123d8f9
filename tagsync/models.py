"""Data models for remote metadata, sync state and local events."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .exceptions import RemoteInvalidResponseError
from .utils import parse_iso_timestamp_ms


@dataclass
class RemoteFileMetadata:
    """Metadata of a file stored on the remote."""

    name: str
    path_display: str
    path_lower: str
    rev: str
    server_modified: str
    size: int = 0

    @property
    def server_modified_ms(self) -> Optional[int]:
        """Server modification time in milliseconds since the epoch."""
        return parse_iso_timestamp_ms(self.server_modified)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteFileMetadata:
        """Create metadata from an API response dictionary.

        Raises:
            RemoteInvalidResponseError: If required fields are missing
        """
        try:
            return cls(
                name=data.get("name", ""),
                path_display=data.get("path_display") or data["path_lower"],
                path_lower=data["path_lower"],
                rev=data["rev"],
                server_modified=data.get("server_modified", ""),
                size=int(data.get("size", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteInvalidResponseError(
                f"Malformed file metadata: {data!r}"
            ) from e


@dataclass
class RemoteDeletedMetadata:
    """Marker for a path deleted on the remote."""

    path_lower: str
    name: Optional[str] = None
    path_display: Optional[str] = None

    @property
    def path(self) -> str:
        return self.path_display or self.path_lower

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteDeletedMetadata:
        try:
            return cls(
                path_lower=data["path_lower"],
                name=data.get("name"),
                path_display=data.get("path_display"),
            )
        except (KeyError, TypeError) as e:
            raise RemoteInvalidResponseError(
                f"Malformed deleted metadata: {data!r}"
            ) from e


RemoteEntry = Union[RemoteFileMetadata, RemoteDeletedMetadata]


@dataclass
class DownloadResult:
    """Downloaded file content together with its metadata."""

    metadata: RemoteFileMetadata
    content: bytes


@dataclass
class ListDeltaResult:
    """All entries changed since a cursor, plus the cursor after them."""

    entries: list[RemoteEntry]
    cursor: str


@dataclass
class TokenSet:
    """OAuth tokens returned by an authorization-code or refresh grant."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[str] = None
    """ISO timestamp (UTC) after which the access token is invalid"""


@dataclass
class FileSyncState:
    """What the engine last knew about a single synced path."""

    remote_revision: Optional[str] = None
    """Remote revision identifier after the last upload/download"""

    last_local_mtime: Optional[int] = None
    """Local modification time (ms) observed at the last sync"""

    last_remote_modified: Optional[int] = None
    """Remote modification time (ms) observed at the last sync"""

    def to_dict(self) -> dict[str, Any]:
        """Convert state to dictionary for JSON serialization."""
        data: dict[str, Any] = {}
        if self.remote_revision is not None:
            data["remoteRevision"] = self.remote_revision
        if self.last_local_mtime is not None:
            data["lastLocalModifiedAt"] = self.last_local_mtime
        if self.last_remote_modified is not None:
            data["lastRemoteModifiedAt"] = self.last_remote_modified
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileSyncState:
        """Create FileSyncState from dictionary."""
        return cls(
            remote_revision=data.get("remoteRevision"),
            last_local_mtime=data.get("lastLocalModifiedAt"),
            last_remote_modified=data.get("lastRemoteModifiedAt"),
        )


@dataclass
class SyncStateData:
    """Persisted sync state: the remote cursor and per-file states."""

    cursor: Optional[str] = None
    files: dict[str, FileSyncState] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cursor": self.cursor,
            "files": {path: state.to_dict() for path, state in self.files.items()},
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> SyncStateData:
        if not data:
            return cls()
        files = data.get("files") or {}
        return cls(
            cursor=data.get("cursor"),
            files={
                path: FileSyncState.from_dict(state or {})
                for path, state in files.items()
            },
        )


class LocalEventType(str, Enum):
    """Kinds of local change notifications."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"


@dataclass(frozen=True)
class LocalEvent:
    """A change notification for a path in the local vault."""

    type: LocalEventType
    path: str
    old_path: Optional[str] = None
    """Previous path, only set for renames"""
