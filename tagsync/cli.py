"""CLI interface for tagsync."""

import logging
import time
from pathlib import Path
from typing import Any, Optional

import click

from .api import RemoteClient
from .auth import (
    build_authorize_url,
    code_challenge_for,
    generate_code_verifier,
    require_configured,
)
from .config import Config, Settings, parse_delimited_list, settings_warnings
from .exceptions import TagSyncError
from .models import TokenSet
from .output import OutputFormatter
from .sync import LocalVault, SyncEngine, SyncStateStore, SyncStatus, start_watching

logger = logging.getLogger(__name__)

_FAILED_STATUSES = {SyncStatus.ERROR, SyncStatus.UNREACHABLE}


def _mask(value: str) -> str:
    """Hide all but the last four characters of a secret."""
    if not value:
        return ""
    if len(value) <= 4:
        return "****"
    return f"****{value[-4:]}"


def _load_settings(ctx: Any) -> Settings:
    out: OutputFormatter = ctx.obj["out"]
    config: Config = ctx.obj["config"]
    try:
        settings = config.load()
    except TagSyncError as e:
        out.error(str(e))
        ctx.exit(1)

    if not settings.vault_path:
        out.error("Vault path not configured.")
        out.info("Run 'tagsync init' to configure tagsync")
        ctx.exit(1)
    return settings


class _SettingsHolder:
    """Current settings, refreshed whenever the remote hands out new tokens."""

    def __init__(self, config: Config, settings: Settings):
        self.config = config
        self.settings = settings

    def get(self) -> Settings:
        return self.settings

    def save_tokens(self, tokens: TokenSet) -> None:
        self.settings = self.config.update(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or self.settings.refresh_token,
            access_token_expires_at=tokens.expires_at or "",
        )
        logger.debug("Stored refreshed tokens")


def _build_engine(ctx: Any, settings: Settings) -> SyncEngine:
    out: OutputFormatter = ctx.obj["out"]
    config: Config = ctx.obj["config"]
    holder = _SettingsHolder(config, settings)

    def on_status_change(status: SyncStatus) -> None:
        logger.info("Status: %s", status.value)

    return SyncEngine(
        vault=LocalVault(Path(settings.vault_path)),
        get_settings=holder.get,
        state_store=SyncStateStore.from_file(config.state_file_for(settings)),
        on_status_change=on_status_change,
        on_notice=out.warning,
        on_tokens_updated=holder.save_tokens,
    )


def _report_run(ctx: Any, engine: SyncEngine, status: SyncStatus, title: str) -> None:
    out: OutputFormatter = ctx.obj["out"]
    stats = engine.last_stats

    if out.json_output:
        out.output_json({"status": status.value, **stats})
    else:
        out.print_summary(
            title,
            [
                ("Status", status.value),
                ("Uploaded", stats["uploads"]),
                ("Downloaded", stats["downloads"]),
                ("Deleted locally", stats["deletes_local"]),
                ("Deleted remotely", stats["deletes_remote"]),
                ("Conflicts", stats["conflicts"]),
                ("Skipped", stats["skips"]),
            ],
        )

    if status in _FAILED_STATUSES:
        ctx.exit(1)


def _run_once(ctx: Any, action: str) -> None:
    """Run one engine command and print its summary."""
    out: OutputFormatter = ctx.obj["out"]
    settings = _load_settings(ctx)
    require_configured(ctx, out, settings)

    engine = _build_engine(ctx, settings)
    engine.state_store.initialize()
    try:
        if action == "resync":
            out.info("Re-uploading all tagged documents...")
            status = engine.resync_all_tagged()
            title = "Resync Complete"
        elif action == "rebuild-index":
            out.info("Rebuilding tag index...")
            status = engine.rebuild_index()
            title = "Index Rebuilt"
        else:
            out.info(f"Syncing {settings.vault_path}...")
            status = engine.sync_now()
            title = "Sync Complete"
    except KeyboardInterrupt:
        out.warning("\nSync cancelled by user")
        ctx.exit(130)
    finally:
        engine.dispose()

    _report_run(ctx, engine, status, title)


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to the config file (default: ~/.config/tagsync/config.json)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="tagsync")
@click.pass_context
def main(
    ctx: Any,
    config_path: Optional[Path],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """tagsync - Sync tagged Markdown notes with remote storage."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["config"] = Config(config_path)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("tagsync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option(
    "--vault",
    "-V",
    "vault_path",
    prompt="Path to your vault",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Local vault directory",
)
@click.option(
    "--tags",
    "-t",
    prompt="Tags to sync (comma separated)",
    help="Comma separated list of tags that select documents to sync",
)
@click.option("--remote-path", "-r", default="/", show_default=True, help="Remote base folder")
@click.option("--access-token", default="", help="Static access token")
@click.option("--app-key", default="", help="App key for the refresh-token flow")
@click.option(
    "--ignore",
    "ignore_globs",
    multiple=True,
    help="Glob of paths never to sync (repeatable)",
)
@click.option("--poll-interval", type=int, default=None, help="Poll interval in seconds")
@click.pass_context
def init(
    ctx: Any,
    vault_path: Path,
    tags: str,
    remote_path: str,
    access_token: str,
    app_key: str,
    ignore_globs: tuple[str, ...],
    poll_interval: Optional[int],
) -> None:
    """Initialize tagsync configuration.

    Stores the vault path, sync tags and credentials in
    ~/.config/tagsync/config.json for future use.
    """
    out: OutputFormatter = ctx.obj["out"]
    config: Config = ctx.obj["config"]

    changes: dict[str, Any] = {
        "vault_path": str(vault_path.expanduser().resolve()),
        "tags_to_sync": parse_delimited_list(tags),
        "remote_base_path": remote_path,
    }
    if access_token:
        changes["access_token"] = access_token
    if app_key:
        changes["app_key"] = app_key
    if ignore_globs:
        changes["ignore_globs"] = list(ignore_globs)
    if poll_interval is not None:
        changes["poll_interval_seconds"] = poll_interval

    try:
        settings = config.update(**changes)
    except (TagSyncError, OSError) as e:
        out.error(f"Initialization failed: {e}")
        ctx.exit(1)

    for warning in settings_warnings(settings):
        out.warning(warning)

    out.print_summary(
        "Initialization Complete",
        [
            ("Config file", str(config.get_config_path())),
            ("Vault", settings.vault_path),
            ("Tags", ", ".join(settings.tags_to_sync)),
            ("Remote base path", settings.remote_base_path),
        ],
    )
    if not settings.access_token and settings.app_key:
        out.info("Run 'tagsync auth url' to connect your account")


@main.group()
def auth() -> None:
    """Connect tagsync to the remote with OAuth (PKCE)."""


@auth.command("url")
@click.option("--app-key", default=None, help="App key (stored for later use)")
@click.pass_context
def auth_url(ctx: Any, app_key: Optional[str]) -> None:
    """Print the URL to authorize tagsync.

    A fresh PKCE verifier is generated and stored. Open the URL, approve
    access and pass the displayed code to 'tagsync auth finish'.
    """
    out: OutputFormatter = ctx.obj["out"]
    config: Config = ctx.obj["config"]

    try:
        settings = config.load()
        app_key = app_key or settings.app_key
        if not app_key:
            out.error("App key not configured.")
            out.info("Pass --app-key or run 'tagsync init --app-key ...'")
            ctx.exit(1)

        verifier = generate_code_verifier()
        config.update(app_key=app_key, pkce_verifier=verifier)
    except TagSyncError as e:
        out.error(str(e))
        ctx.exit(1)

    url = build_authorize_url(app_key, code_challenge_for(verifier))
    if out.json_output:
        out.output_json({"url": url})
    else:
        out.print("Open this URL in your browser and approve access:")
        out.print(url, soft_wrap=True)
        out.info("Then run: tagsync auth finish <CODE>")


@auth.command("finish")
@click.argument("code")
@click.pass_context
def auth_finish(ctx: Any, code: str) -> None:
    """Exchange the authorization CODE for tokens."""
    out: OutputFormatter = ctx.obj["out"]
    config: Config = ctx.obj["config"]

    try:
        settings = config.load()
        if not settings.app_key or not settings.pkce_verifier:
            out.error("No pending authorization.")
            out.info("Run 'tagsync auth url' first")
            ctx.exit(1)

        with RemoteClient(app_key=settings.app_key) as client:
            tokens = client.exchange_authorization_code(code, settings.pkce_verifier)

        config.update(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or "",
            access_token_expires_at=tokens.expires_at or "",
            pkce_verifier="",
        )
    except TagSyncError as e:
        out.error(f"Authorization failed: {e}")
        ctx.exit(1)

    out.success("✓ Connected")
    if not tokens.refresh_token:
        out.warning("No refresh token received; the access token will expire.")


@main.command()
@click.pass_context
def sync(ctx: Any) -> None:
    """Run one sync pass between the vault and the remote."""
    _run_once(ctx, "sync")


@main.command()
@click.pass_context
def resync(ctx: Any) -> None:
    """Re-list the remote and re-upload every tagged document."""
    _run_once(ctx, "resync")


@main.command("rebuild-index")
@click.pass_context
def rebuild_index(ctx: Any) -> None:
    """Recompute which documents carry a sync tag, then sync."""
    _run_once(ctx, "rebuild-index")


@main.command()
@click.pass_context
def watch(ctx: Any) -> None:
    """Watch the vault and keep it in sync until interrupted."""
    out: OutputFormatter = ctx.obj["out"]
    settings = _load_settings(ctx)
    require_configured(ctx, out, settings)

    engine = _build_engine(ctx, settings)
    engine.initialize()
    observer = start_watching(Path(settings.vault_path), engine.handle_local_event)

    out.info(
        f"Watching {settings.vault_path} "
        f"(polling every {settings.poll_interval_seconds}s). Press Ctrl+C to stop."
    )
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        out.info("\nStopping...")
    finally:
        observer.stop()
        observer.join()
        engine.dispose()

    out.success(f"Stopped ({engine.status.value})")


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show configuration and sync state summary."""
    out: OutputFormatter = ctx.obj["out"]
    config: Config = ctx.obj["config"]
    settings = _load_settings(ctx)

    store = SyncStateStore.from_file(config.state_file_for(settings))
    store.initialize()
    tracked = store.all_files()
    problems = settings_warnings(settings)

    out.print_summary(
        "tagsync Status",
        [
            ("Vault", settings.vault_path),
            ("Tags", ", ".join(settings.tags_to_sync) or "-"),
            ("Remote base path", settings.remote_base_path),
            (
                "Authentication",
                "refresh token" if settings.uses_refresh_token
                else ("access token" if settings.access_token else "not connected"),
            ),
            ("Tracked files", len(tracked)),
            ("Cursor", "set" if store.get_cursor() else "unset"),
            ("Ready", "yes" if not problems else "no"),
        ],
    )
    for problem in problems:
        out.warning(problem)


@main.group("config")
def config_group() -> None:
    """Inspect tagsync configuration."""


@config_group.command("show")
@click.pass_context
def config_show(ctx: Any) -> None:
    """Show the effective settings with secrets masked."""
    out: OutputFormatter = ctx.obj["out"]
    config: Config = ctx.obj["config"]

    try:
        settings = config.load()
    except TagSyncError as e:
        out.error(str(e))
        ctx.exit(1)

    data = settings.to_dict()
    for key in ("access_token", "refresh_token", "pkce_verifier"):
        data[key] = _mask(data[key])

    if out.json_output:
        out.output_json({"config_file": str(config.get_config_path()), **data})
        return

    items = [("Config file", str(config.get_config_path()))]
    for key, value in data.items():
        if isinstance(value, list):
            value = ", ".join(value) or "-"
        items.append((key, value if value != "" else "-"))
    out.print_summary("tagsync Configuration", items)


if __name__ == "__main__":
    main()
