"""Tests for tag extraction and scope computation."""

from pathlib import Path

import pytest

from tagsync.sync.scope import (
    FrontmatterTagSource,
    ScopeIndex,
    extract_frontmatter_tags,
    extract_inline_tags,
)
from tagsync.sync.vault import LocalVault


class StaticTagSource:
    """Tag source backed by a dictionary."""

    def __init__(self, tags):
        self.tags = tags

    def tags_for(self, path):
        return self.tags.get(path, [])


@pytest.fixture
def vault(tmp_path):
    return LocalVault(Path(tmp_path))


class TestExtractTags:
    """Tests for tag extraction helpers."""

    def test_frontmatter_list(self):
        assert extract_frontmatter_tags({"tags": ["#Shared", "Work"]}) == ["shared", "work"]

    def test_frontmatter_string(self):
        assert extract_frontmatter_tags({"tags": "shared, work other"}) == [
            "shared",
            "work",
            "other",
        ]

    def test_tags_wins_over_tag(self):
        assert extract_frontmatter_tags({"tags": ["a"], "tag": "b"}) == ["a"]
        assert extract_frontmatter_tags({"tag": "b"}) == ["b"]

    def test_no_tags(self):
        assert extract_frontmatter_tags({}) == []
        assert extract_frontmatter_tags({"tags": 5}) == []

    def test_inline_tags(self):
        body = "Some #Shared text (#work) and a heading\n# Title\n#2024 issue#1"
        assert extract_inline_tags(body) == ["shared", "work"]

    def test_inline_tags_in_code_ignored(self):
        body = "```\n#shared\n```\nplain #visible"
        assert extract_inline_tags(body) == ["visible"]


class TestFrontmatterTagSource:
    """Tests for FrontmatterTagSource."""

    def test_frontmatter_and_inline(self, vault):
        vault.write("a.md", b"---\ntags: [shared]\n---\nBody #extra\n")
        assert FrontmatterTagSource(vault).tags_for("a.md") == ["shared", "extra"]

    def test_invalid_frontmatter_falls_back_to_inline(self, vault):
        vault.write("a.md", b"---\ntags: [unclosed\n---\nBody #shared\n")
        assert "shared" in FrontmatterTagSource(vault).tags_for("a.md")

    def test_missing_file(self, vault):
        assert FrontmatterTagSource(vault).tags_for("missing.md") == []


class TestScopeIndex:
    """Tests for ScopeIndex.compute_scope."""

    def test_tagged_documents_only(self, vault):
        vault.write("a.md", b"")
        vault.write("b.md", b"")
        vault.write("c.txt", b"")
        index = ScopeIndex(vault, StaticTagSource({"a.md": ["Shared"], "c.txt": ["shared"]}))

        assert index.compute_scope(["#shared"], []) == {"a.md"}

    def test_empty_tags_empty_scope(self, vault):
        vault.write("a.md", b"")
        index = ScopeIndex(vault, StaticTagSource({"a.md": ["shared"]}))
        assert index.compute_scope([], []) == set()

    @pytest.mark.filterwarnings("error::DeprecationWarning")
    def test_ignore_globs(self, vault):
        vault.write("private/a.md", b"")
        vault.write(".obsidian/b.md", b"")
        vault.write("public/c.md", b"")
        tags = {path: ["shared"] for path in ["private/a.md", ".obsidian/b.md", "public/c.md"]}
        index = ScopeIndex(vault, StaticTagSource(tags))

        scope = index.compute_scope(["shared"], ["private/**", ".obsidian/**"])

        assert scope == {"public/c.md"}

    def test_conflict_copies_excluded(self, vault):
        """Test that conflict copies never enter scope even when tagged."""
        copy = "Note (conflict v1 2024-01-01_10-00).md"
        vault.write("Note.md", b"")
        vault.write(copy, b"")
        index = ScopeIndex(vault, StaticTagSource({"Note.md": ["shared"], copy: ["shared"]}))

        assert index.compute_scope(["shared"], []) == {"Note.md"}

    def test_real_documents(self, vault):
        """Test scope with tags read from file contents."""
        vault.write("in.md", b"---\ntags: shared\n---\ntext\n")
        vault.write("out.md", b"---\ntags: other\n---\ntext\n")
        vault.write("inline.md", b"text #Shared\n")
        index = ScopeIndex(vault, FrontmatterTagSource(vault))

        assert index.compute_scope(["shared"], []) == {"in.md", "inline.md"}
