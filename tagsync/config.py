"""Settings and configuration file handling for tagsync."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Iterable, Optional

from .exceptions import ConfigError
from .paths import normalize_remote_base_path

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 30
MIN_POLL_INTERVAL_SECONDS = 5
DEFAULT_MAX_UPLOAD_SIZE_MB = 20.0
MIN_MAX_UPLOAD_SIZE_MB = 1.0


def normalize_tag(raw_tag: str) -> str:
    """Normalize a tag for comparison: trim, strip leading '#', lower-case.

    Examples:
        >>> normalize_tag("#Foo")
        'foo'
        >>> normalize_tag(" FOO ")
        'foo'
    """
    return raw_tag.strip().lstrip("#").lower()


def normalize_tags(raw_tags: Iterable[str]) -> list[str]:
    """Normalize and deduplicate tags, keeping the first occurrence order."""
    seen: dict[str, None] = {}
    for tag in raw_tags:
        normalized = normalize_tag(tag)
        if normalized:
            seen[normalized] = None
    return list(seen)


def parse_delimited_list(value: str) -> list[str]:
    """Split a comma or newline separated string into trimmed items."""
    items = value.replace("\n", ",").split(",")
    return [item.strip() for item in items if item.strip()]


@dataclass
class Settings:
    """User settings consumed by the sync engine."""

    tags_to_sync: list[str] = field(default_factory=list)
    access_token: str = ""
    app_key: str = ""
    refresh_token: str = ""
    access_token_expires_at: str = ""
    pkce_verifier: str = ""
    remote_base_path: str = "/"
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    max_upload_size_mb: float = DEFAULT_MAX_UPLOAD_SIZE_MB
    vault_id: str = ""
    vault_path: str = ""
    ignore_globs: list[str] = field(default_factory=list)

    @property
    def max_upload_bytes(self) -> int:
        return int(self.max_upload_size_mb * 1024 * 1024)

    @property
    def uses_refresh_token(self) -> bool:
        return bool(self.app_key.strip() and self.refresh_token.strip())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create Settings from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


def _coerce_number(value: Any, fallback: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if number != number or number in (float("inf"), float("-inf")):
        return fallback
    return number


def sanitize_settings(settings: Settings) -> Settings:
    """Return a normalized copy of the settings.

    Tags are normalized and deduplicated, the remote base path normalized,
    the poll interval rounded and clamped to at least 5 seconds and the
    upload limit clamped to at least 1 MB.
    """
    poll_seconds = _coerce_number(
        settings.poll_interval_seconds, DEFAULT_POLL_INTERVAL_SECONDS
    )
    max_upload = _coerce_number(settings.max_upload_size_mb, DEFAULT_MAX_UPLOAD_SIZE_MB)

    return replace(
        settings,
        tags_to_sync=normalize_tags(settings.tags_to_sync or []),
        access_token=(settings.access_token or "").strip(),
        app_key=(settings.app_key or "").strip(),
        refresh_token=(settings.refresh_token or "").strip(),
        remote_base_path=normalize_remote_base_path(settings.remote_base_path or "/"),
        poll_interval_seconds=max(MIN_POLL_INTERVAL_SECONDS, int(round(poll_seconds))),
        max_upload_size_mb=max(MIN_MAX_UPLOAD_SIZE_MB, max_upload),
        vault_id=settings.vault_id or "",
        ignore_globs=[glob for glob in (settings.ignore_globs or []) if glob.strip()],
    )


def settings_warnings(settings: Settings) -> list[str]:
    """List human-readable problems with the settings."""
    warnings = []
    if not settings.tags_to_sync:
        warnings.append("Add at least one tag to enable syncing.")
    if not settings.access_token.strip() and not settings.uses_refresh_token:
        warnings.append("An access token or an app key with refresh token is required.")
    if not settings.remote_base_path.strip():
        warnings.append("Remote base path is required.")
    if settings.poll_interval_seconds < MIN_POLL_INTERVAL_SECONDS:
        warnings.append("Poll interval must be at least 5 seconds.")
    if settings.max_upload_size_mb < MIN_MAX_UPLOAD_SIZE_MB:
        warnings.append("Max upload size must be at least 1 MB.")
    return warnings


def setup_issue(settings: Settings) -> Optional[str]:
    """Return the first problem that prevents syncing, or None."""
    if not settings.tags_to_sync:
        return "Add at least one tag to 'tags_to_sync'."
    if not settings.access_token.strip() and not settings.uses_refresh_token:
        return "Run 'tagsync auth url' to connect the remote, or set an access token."
    if not settings.remote_base_path.strip():
        return "Set a remote base path."
    return None


def is_configured(settings: Settings) -> bool:
    return setup_issue(settings) is None


class Config:
    """Configuration file manager.

    Settings are stored as JSON in ~/.config/tagsync/config.json (or the
    file named by TAGSYNC_CONFIG). Credentials and the vault path can be
    overridden through environment variables.
    """

    ENV_OVERRIDES = {
        "TAGSYNC_ACCESS_TOKEN": "access_token",
        "TAGSYNC_APP_KEY": "app_key",
        "TAGSYNC_REFRESH_TOKEN": "refresh_token",
        "TAGSYNC_VAULT": "vault_path",
    }

    def __init__(self, config_path: Optional[Path] = None):
        if config_path is None:
            env_path = os.environ.get("TAGSYNC_CONFIG")
            config_path = (
                Path(env_path)
                if env_path
                else Path.home() / ".config" / "tagsync" / "config.json"
            )
        self.config_path = config_path

    @property
    def config_dir(self) -> Path:
        return self.config_path.parent

    def get_config_path(self) -> Path:
        return self.config_path

    def exists(self) -> bool:
        return self.config_path.exists()

    def _read_file(self) -> dict[str, Any]:
        if not self.config_path.exists():
            return {}
        try:
            with open(self.config_path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid config file {self.config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid config file {self.config_path}: not an object")
        return data

    def load(self) -> Settings:
        """Load settings from the config file and environment.

        A missing installation id is generated and written back so that it
        stays stable across runs.
        """
        stored = self._read_file()
        if not stored.get("vault_id"):
            stored["vault_id"] = str(uuid.uuid4())
            logger.debug("Generated installation id %s", stored["vault_id"])
            self._write_file(stored)

        data = dict(stored)
        for env_name, key in self.ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                data[key] = value
        return sanitize_settings(Settings.from_dict(data))

    def _write_file(self, data: dict[str, Any]) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.config_path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.config_path)
        logger.debug("Saved settings to %s", self.config_path)

    def save(self, settings: Settings) -> None:
        """Write settings to the config file with owner-only permissions."""
        self._write_file(settings.to_dict())

    def update(self, **changes: Any) -> Settings:
        """Apply changes to the stored settings and save them.

        Environment overrides are not written back to the file.
        """
        stored = sanitize_settings(Settings.from_dict(self._read_file()))
        if not stored.vault_id:
            stored.vault_id = str(uuid.uuid4())
        settings = sanitize_settings(replace(stored, **changes))
        self.save(settings)
        return self.load()

    def state_file_for(self, settings: Settings) -> Path:
        """State file path for a vault and remote base path pair."""
        vault = str(Path(settings.vault_path).expanduser().resolve())
        combined = f"{vault}:{settings.remote_base_path}"
        key = hashlib.sha256(combined.encode()).hexdigest()[:16]
        return self.config_dir / "sync_state" / f"{key}.json"
