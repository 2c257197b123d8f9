"""Remote operations addressed by local vault paths."""

from typing import Optional

from ..api import RemoteClient
from ..models import DownloadResult, ListDeltaResult, RemoteFileMetadata
from ..paths import normalize_remote_base_path, to_remote_path


class SyncOperations:
    """Unified remote operations with local-path addressing."""

    def __init__(self, client: RemoteClient, remote_base_path: str):
        """Initialize sync operations.

        Args:
            client: Remote API client
            remote_base_path: Remote folder mirroring the vault root
        """
        self.client = client
        self.remote_base_path = normalize_remote_base_path(remote_base_path)

    def remote_path(self, local_path: str) -> str:
        return to_remote_path(self.remote_base_path, local_path)

    def list_changes(self, cursor: Optional[str]) -> ListDeltaResult:
        """List remote changes since a cursor (full listing without one)."""
        return self.client.list_delta(self.remote_base_path, cursor)

    def upload(self, local_path: str, content: bytes) -> RemoteFileMetadata:
        """Upload document content to the remote path of a local path."""
        return self.client.upload(self.remote_path(local_path), content)

    def download(self, local_path: str) -> DownloadResult:
        """Download the remote counterpart of a local path."""
        return self.client.download(self.remote_path(local_path))

    def delete(self, local_path: str) -> bool:
        """Delete the remote counterpart of a local path.

        Returns:
            False if the remote file was already absent
        """
        return self.client.delete(self.remote_path(local_path))
