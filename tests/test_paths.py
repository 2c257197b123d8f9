"""Unit tests for local/remote path translation."""

import pytest

from tagsync.paths import (
    is_conflict_copy_path,
    is_document_path,
    normalize_local_path,
    normalize_remote_base_path,
    to_local_path,
    to_remote_path,
)


class TestNormalizeRemoteBasePath:
    """Tests for normalize_remote_base_path function."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("", "/"),
            ("   ", "/"),
            ("/", "/"),
            ("notes", "/notes"),
            ("/notes/", "/notes"),
            ("//notes//shared//", "/notes/shared"),
            ("notes\\shared", "/notes/shared"),
        ],
    )
    def test_normalization(self, raw, expected):
        assert normalize_remote_base_path(raw) == expected


class TestNormalizeLocalPath:
    """Tests for normalize_local_path function."""

    def test_backslashes_and_leading_slash(self):
        assert normalize_local_path("\\notes\\a.md") == "notes/a.md"
        assert normalize_local_path("/notes/a.md") == "notes/a.md"

    def test_already_normalized(self):
        assert normalize_local_path("notes/a.md") == "notes/a.md"


class TestPathTranslation:
    """Tests for to_remote_path and to_local_path."""

    def test_root_base(self):
        """Test mapping with the remote root as base."""
        assert to_remote_path("/", "notes/a.md") == "/notes/a.md"
        assert to_local_path("/", "/notes/a.md") == "notes/a.md"

    def test_nested_base(self):
        """Test mapping below a base folder."""
        assert to_remote_path("/vault", "notes/a.md") == "/vault/notes/a.md"
        assert to_local_path("/vault", "/vault/notes/a.md") == "notes/a.md"

    def test_base_itself_maps_to_none(self):
        assert to_local_path("/vault", "/vault") is None

    def test_outside_base_maps_to_none(self):
        """Test that sibling folders sharing a prefix are outside the base."""
        assert to_local_path("/vault", "/vaultx/a.md") is None
        assert to_local_path("/vault", "/other/a.md") is None

    @pytest.mark.parametrize("base", ["/", "/vault", "vault/", "/a/b"])
    def test_round_trip(self, base):
        """Test that to_local_path inverts to_remote_path."""
        local = "folder/sub/Note.md"
        assert to_local_path(base, to_remote_path(base, local)) == local


class TestDocumentPaths:
    """Tests for document and conflict copy recognition."""

    def test_markdown_is_document(self):
        assert is_document_path("a.md")
        assert is_document_path("folder/A.MD")

    def test_other_files_are_not_documents(self):
        assert not is_document_path("image.png")
        assert not is_document_path("notes.md.bak")

    def test_conflict_copy_recognized(self):
        assert is_conflict_copy_path("Note (conflict v1 2024-01-01_10-00).md")
        assert is_conflict_copy_path("a/b/Note (conflict v1 2024-01-01_10-00)-2.md")

    def test_conflict_copy_case_insensitive(self):
        assert is_conflict_copy_path("Note (Conflict v1 2024-01-01_10-00).MD")

    def test_regular_note_not_conflict_copy(self):
        assert not is_conflict_copy_path("Note.md")
        assert not is_conflict_copy_path("About conflict resolution.md")
        assert not is_conflict_copy_path("Note (draft).md")
