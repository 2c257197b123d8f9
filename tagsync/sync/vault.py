"""Local document tree access for sync operations."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..paths import is_document_path, normalize_local_path

logger = logging.getLogger(__name__)


@dataclass
class LocalFile:
    """Represents a local file with metadata."""

    path: Path
    """Absolute path to the file"""

    relative_path: str
    """Relative path (using forward slashes for cross-platform compatibility)"""

    size: int
    """File size in bytes"""

    mtime: int
    """Last modification time in milliseconds since the epoch"""

    @classmethod
    def from_path(cls, file_path: Path, base_path: Path) -> "LocalFile":
        """Create LocalFile from a path.

        Args:
            file_path: Absolute path to the file
            base_path: Base path for calculating relative paths

        Returns:
            LocalFile instance
        """
        stat = file_path.stat()
        # Use as_posix() to ensure forward slashes on all platforms
        relative_path = file_path.relative_to(base_path).as_posix()
        return cls(
            path=file_path,
            relative_path=relative_path,
            size=stat.st_size,
            mtime=stat.st_mtime_ns // 1_000_000,
        )


class LocalVault:
    """File access by vault-relative path.

    Examples:
        >>> vault = LocalVault(Path("/notes"))
        >>> _ = vault.write("projects/a.md", b"hello")
        >>> [f.relative_path for f in vault.list_documents()]
        ['projects/a.md']
    """

    def __init__(self, root: Path):
        self.root = Path(root).expanduser().resolve()

    def resolve(self, path: str) -> Path:
        """Absolute filesystem path for a vault-relative path.

        Raises:
            ValueError: If the path escapes the vault root
        """
        relative = normalize_local_path(path)
        absolute = (self.root / relative).resolve()
        if absolute != self.root and self.root not in absolute.parents:
            raise ValueError(f"Path escapes the vault: {path}")
        return absolute

    def get_file(self, path: str) -> Optional[LocalFile]:
        """Return file metadata, or None when no regular file exists there."""
        absolute = self.resolve(path)
        if not absolute.is_file():
            return None
        try:
            return LocalFile.from_path(absolute, self.root)
        except FileNotFoundError:
            return None

    def exists(self, path: str) -> bool:
        return self.resolve(path).exists()

    def read(self, path: str) -> bytes:
        return self.resolve(path).read_bytes()

    def write(self, path: str, content: bytes) -> LocalFile:
        """Create or overwrite a file, creating parent folders as needed."""
        absolute = self.resolve(path)
        self.create_folder(absolute.parent.relative_to(self.root).as_posix())
        absolute.write_bytes(content)
        return LocalFile.from_path(absolute, self.root)

    def delete(self, path: str) -> None:
        """Delete a file. A missing file is not an error."""
        self.resolve(path).unlink(missing_ok=True)

    def create_folder(self, path: str) -> None:
        folder = self.resolve(path)
        if folder == self.root:
            return
        folder.mkdir(parents=True, exist_ok=True)

    def list_documents(self, directory: Optional[Path] = None) -> list[LocalFile]:
        """Recursively list Markdown documents.

        Args:
            directory: Directory to scan (defaults to the vault root)

        Returns:
            List of LocalFile objects
        """
        if directory is None:
            directory = self.root

        files: list[LocalFile] = []
        try:
            for item in directory.iterdir():
                if item.is_file():
                    if not is_document_path(item.name):
                        continue
                    try:
                        files.append(LocalFile.from_path(item, self.root))
                    except OSError:
                        # Skip files we can't stat
                        continue
                elif item.is_dir() and not item.is_symlink():
                    files.extend(self.list_documents(item))
        except FileNotFoundError:
            logger.debug("Directory vanished while scanning: %s", directory)
        except PermissionError:
            logger.debug("Permission denied while scanning %s", directory)

        return files
