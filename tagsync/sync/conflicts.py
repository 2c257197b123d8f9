"""Conflict copy naming and removal of sync tags from conflict copies.

A conflict copy must never carry a sync tag, otherwise it would enter the
sync scope itself and produce new conflicts on the next pass.
"""

import re
from datetime import datetime
from typing import Callable, Iterable, Optional

from ..paths import normalize_local_path

_FRONTMATTER_RE = re.compile(r"^---\r?\n(.*?)\r?\n---(\r?\n)?", re.DOTALL)
_TAG_KEY_RE = re.compile(r"^(\s*)(tags?)\s*:\s*(.*)$", re.IGNORECASE)
_LIST_ITEM_RE = re.compile(r"^\s*-\s*(.+?)\s*$")
_INLINE_TAG_RE = re.compile(r"(^|[\s(\[{>\"'`])#([\w/-]+)", re.MULTILINE)
_TRAILING_WHITESPACE_RE = re.compile(r"[ \t]+\n")
_UNSAFE_ID_CHARS_RE = re.compile(r"[^a-zA-Z0-9_-]")
_DOCUMENT_SUFFIX_RE = re.compile(r"\.md$", re.IGNORECASE)


def normalize_tag_for_match(raw_tag: str) -> str:
    """Normalize a tag value found in a document for comparison.

    Like regular tag normalization, but surrounding quotes are trimmed too.

    Examples:
        >>> normalize_tag_for_match('"#Shared"')
        'shared'
    """
    return raw_tag.strip().lstrip("#").strip("'\"").lower()


def build_sync_tag_set(tags_to_sync: Iterable[str]) -> set[str]:
    return {tag for tag in map(normalize_tag_for_match, tags_to_sync) if tag}


def build_conflict_path(
    local_path: str,
    installation_id: str,
    now: Optional[datetime] = None,
) -> str:
    """Build the conflict copy path for a document.

    Examples:
        >>> build_conflict_path("notes/Note.md", "v1", datetime(2024, 1, 1, 10, 0))
        'notes/Note (conflict v1 2024-01-01_10-00).md'
    """
    normalized = normalize_local_path(local_path)
    directory, _, filename = normalized.rpartition("/")
    base_name = _DOCUMENT_SUFFIX_RE.sub("", filename)
    safe_id = _UNSAFE_ID_CHARS_RE.sub("-", installation_id or "vault")
    timestamp = (now or datetime.now()).strftime("%Y-%m-%d_%H-%M")

    conflict_name = f"{base_name} (conflict {safe_id} {timestamp}).md"
    return f"{directory}/{conflict_name}" if directory else conflict_name


def find_free_conflict_path(conflict_path: str, exists: Callable[[str], bool]) -> str:
    """Append -1, -2, ... before the suffix until the path is unused."""
    final_path = conflict_path
    suffix = 1
    while exists(final_path):
        final_path = _DOCUMENT_SUFFIX_RE.sub(f"-{suffix}.md", conflict_path)
        suffix += 1
    return final_path


def strip_sync_tags(content: str, tags_to_sync: Iterable[str]) -> str:
    """Remove every sync tag from a document.

    Front matter ``tag``/``tags`` entries (inline list, comma separated,
    single value or block list) are removed, dropping the key when nothing
    remains. Inline ``#tags`` in the body are removed as well.

    Args:
        content: Document text
        tags_to_sync: Configured sync tags

    Returns:
        Document text without sync tags
    """
    sync_tags = build_sync_tag_set(tags_to_sync)
    if not sync_tags:
        return content

    match = _FRONTMATTER_RE.match(content)
    if not match:
        return _strip_inline_tags(content, sync_tags)

    newline = "\r\n" if "\r\n" in match.group(0) else "\n"
    frontmatter_body = _strip_frontmatter_tags(match.group(1), sync_tags, newline)
    body = _strip_inline_tags(content[match.end() :], sync_tags)
    return f"---{newline}{frontmatter_body}{newline}---{newline}{body}"


def _strip_frontmatter_tags(frontmatter_body: str, sync_tags: set[str], newline: str) -> str:
    lines = re.split(r"\r?\n", frontmatter_body)
    output: list[str] = []

    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        match = _TAG_KEY_RE.match(line)
        if not match:
            output.append(line)
            continue

        indent, key, raw_value = match.group(1), match.group(2), match.group(3).strip()
        if raw_value:
            stripped = _strip_frontmatter_value(raw_value, sync_tags)
            if stripped is not None:
                output.append(f"{indent}{key}: {stripped}")
            continue

        # Block list: items are indented below the key
        kept_items: list[str] = []
        while i < len(lines) and (
            lines[i].startswith(f"{indent}  ") or lines[i].startswith(f"{indent}\t")
        ):
            item_line = lines[i]
            i += 1
            item = _LIST_ITEM_RE.match(item_line)
            if item and normalize_tag_for_match(item.group(1)) in sync_tags:
                continue
            kept_items.append(item_line)

        if kept_items:
            output.append(f"{indent}{key}:")
            output.extend(kept_items)

    return newline.join(output)


def _strip_frontmatter_value(raw_value: str, sync_tags: set[str]) -> Optional[str]:
    """Strip sync tags from a single-line value; None removes the key."""
    value = raw_value.strip()
    if not value:
        return None

    if value.startswith("[") and value.endswith("]"):
        items = [item.strip() for item in value[1:-1].split(",") if item.strip()]
        kept = [item for item in items if normalize_tag_for_match(item) not in sync_tags]
        return f"[{', '.join(kept)}]" if kept else None

    if "," in value:
        items = [item.strip() for item in value.split(",") if item.strip()]
        kept = [item for item in items if normalize_tag_for_match(item) not in sync_tags]
        return ", ".join(kept) if kept else None

    return None if normalize_tag_for_match(value) in sync_tags else value


def _strip_inline_tags(body: str, sync_tags: set[str]) -> str:
    def replace(match: "re.Match[str]") -> str:
        if normalize_tag_for_match(match.group(2)) not in sync_tags:
            return match.group(0)
        prefix = match.group(1)
        following = match.string[match.end() : match.end() + 1]
        if prefix in (" ", "\t") and following in (" ", "\t"):
            return ""
        return prefix

    stripped = _INLINE_TAG_RE.sub(replace, body)
    return _TRAILING_WHITESPACE_RE.sub("\n", stripped)
