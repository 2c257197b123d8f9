"""Tag extraction and the set of documents in sync scope."""

import logging
import re
from typing import Any, Iterable, Protocol

import frontmatter
import yaml
from pathspec import GitIgnoreSpec

from ..config import normalize_tag, normalize_tags
from ..paths import is_conflict_copy_path, normalize_local_path
from .vault import LocalVault

logger = logging.getLogger(__name__)

# A '#' preceded by start of line, whitespace or an opening bracket/quote
INLINE_TAG_RE = re.compile(r"(^|[\s(\[{>\"'`])#([\w/-]+)", re.MULTILINE)

_FENCED_CODE_RE = re.compile(r"^(```|~~~).*?^\1[^\n]*$", re.MULTILINE | re.DOTALL)


class TagSource(Protocol):
    """Anything that can report the tags of a document."""

    def tags_for(self, path: str) -> Iterable[str]: ...


def extract_frontmatter_tags(metadata: dict[str, Any]) -> list[str]:
    """Normalized tags from a front matter mapping.

    The ``tags`` key wins over ``tag``. Values may be a list or a single
    comma/space delimited string.
    """
    source = metadata.get("tags")
    if source is None:
        source = metadata.get("tag")
    if not source:
        return []

    if isinstance(source, (list, tuple)):
        return [normalize_tag(str(item)) for item in source if item is not None]
    if isinstance(source, str):
        return [normalize_tag(value) for value in re.split(r"[,\s]+", source) if value]
    return []


def extract_inline_tags(body: str) -> list[str]:
    """Normalized ``#tags`` from a document body, ignoring fenced code."""
    text = _FENCED_CODE_RE.sub("", body)
    tags = []
    for match in INLINE_TAG_RE.finditer(text):
        value = match.group(2)
        if value.isdigit():
            continue
        tags.append(normalize_tag(value))
    return tags


class FrontmatterTagSource:
    """Reads tags straight from the Markdown files of a vault."""

    def __init__(self, vault: LocalVault):
        self.vault = vault

    def tags_for(self, path: str) -> list[str]:
        try:
            raw = self.vault.read(path).decode("utf-8", errors="replace")
        except OSError as e:
            logger.debug("Cannot read %s for tags: %s", path, e)
            return []

        try:
            post = frontmatter.loads(raw)
        except (yaml.YAMLError, TypeError, ValueError) as e:
            logger.debug("Unparseable front matter in %s: %s", path, e)
            return [tag for tag in extract_inline_tags(raw) if tag]

        metadata = post.metadata if isinstance(post.metadata, dict) else {}
        tags = extract_frontmatter_tags(metadata) + extract_inline_tags(post.content)
        return [tag for tag in tags if tag]


class ScopeIndex:
    """Computes which local documents are in sync scope."""

    def __init__(self, vault: LocalVault, tag_source: TagSource):
        self.vault = vault
        self.tag_source = tag_source

    def compute_scope(self, tags: Iterable[str], ignore_globs: Iterable[str]) -> set[str]:
        """Return paths of documents carrying at least one of the tags.

        Args:
            tags: Sync tags (normalized here, so raw values are fine)
            ignore_globs: Glob patterns of paths never to sync

        Returns:
            Set of vault-relative paths. Empty when no tags are configured.
        """
        normalized_tags = set(normalize_tags(tags))
        if not normalized_tags:
            return set()

        patterns = [
            normalize_local_path(glob.strip()) for glob in ignore_globs if glob.strip()
        ]
        ignore_spec = GitIgnoreSpec.from_lines(patterns)

        result: set[str] = set()
        for local_file in self.vault.list_documents():
            local_path = normalize_local_path(local_file.relative_path)
            if ignore_spec.match_file(local_path):
                continue
            if is_conflict_copy_path(local_path):
                continue
            if self.file_has_any_tag(local_path, normalized_tags):
                result.add(local_path)

        logger.debug("Scope contains %d document(s)", len(result))
        return result

    def file_has_any_tag(self, path: str, normalized_tags: set[str]) -> bool:
        file_tags = {normalize_tag(tag) for tag in self.tag_source.tags_for(path)}
        return not file_tags.isdisjoint(normalized_tags)
