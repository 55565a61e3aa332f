"""Command-line interface for Marksync."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import httpx
import uvicorn

CONFIG_DIR_HELP = "Configuration directory (default: ~/.marksync)"


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run_with_services(config_dir: Optional[Path], action):
    """Load configuration, build the services, run action(services), close them."""
    from .api.dependencies import build_services
    from .config import ConfigManager

    cm = ConfigManager(config_dir)
    app_config = cm.load_app_config()
    env_settings = cm.load_env_settings()
    _configure_logging(app_config.log_level)

    async def runner():
        services = await build_services(app_config, env_settings)
        try:
            return await action(services)
        finally:
            await services.close()

    return asyncio.run(runner())


@click.group()
@click.version_option(version="0.1.0", prog_name="marksync")
def cli():
    """Marksync - bookmark manager with remote sync."""
    pass


@cli.command()
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_DIR_HELP,
)
@click.option(
    "--data-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Local data directory (default: <config-dir>/data)",
)
@click.option(
    "--remote-provider",
    type=click.Choice(["none", "drive-folder", "http"], case_sensitive=False),
    default="none",
    show_default=True,
    help="Where to sync. 'drive-folder' uses a cloud drive's local sync folder.",
)
@click.option(
    "--remote-path",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Cloud drive folder used with --remote-provider drive-folder.",
)
@click.option(
    "--remote-url",
    type=str,
    default=None,
    help="Document endpoint base URL used with --remote-provider http.",
)
@click.option(
    "--remote-token",
    type=str,
    default=None,
    help="Bearer token for the http remote (will be saved to .env file)",
)
def init(
    config_dir: Optional[Path],
    data_dir: Optional[Path],
    remote_provider: str,
    remote_path: Optional[Path],
    remote_url: Optional[str],
    remote_token: Optional[str],
):
    """Initialize Marksync configuration.

    Creates the configuration directory, config.yaml, .env and the data directory.
    """
    from .config import ConfigError, ConfigManager
    from .models.config import AppConfig

    try:
        cm = ConfigManager(config_dir)

        click.echo(f"Initializing Marksync at {cm.config_dir}...")
        cm.config_dir.mkdir(parents=True, exist_ok=True)

        provider = remote_provider.lower().replace("-", "_")
        if provider == "drive_folder" and remote_path is None:
            entered = click.prompt(
                "Cloud drive sync folder",
                type=click.Path(path_type=Path, file_okay=False),
            )
            remote_path = Path(entered)
        if provider == "http" and not remote_url:
            remote_url = click.prompt("Remote document base URL", type=str)

        data_dir = data_dir or cm.config_dir / "data"
        data_dir.mkdir(parents=True, exist_ok=True)
        if remote_path is not None:
            remote_path.mkdir(parents=True, exist_ok=True)

        app_config = AppConfig(
            data_dir=str(data_dir),
            remote_provider=provider,
            remote_path=str(remote_path) if remote_path else None,
            remote_url=remote_url,
        )

        cm.create_env_file(remote_token)
        click.echo("[OK] Created .env file")

        cm.save_app_config(app_config)
        click.echo("[OK] Created config.yaml")
        click.echo(f"[OK] Created data directory at {data_dir}")

        click.echo("\n" + "=" * 60)
        click.echo("[SUCCESS] Marksync initialized successfully!")
        click.echo("=" * 60)

        if provider == "http" and not remote_token:
            click.echo(f"\n[WARNING] Add MARKSYNC_REMOTE_TOKEN to: {cm.env_file}")

        click.echo(f"\nConfiguration directory: {cm.config_dir}")
        click.echo(f"Data directory: {data_dir}")
        click.echo(f"Remote: {provider}")
        click.echo("\nStart the server with: marksync serve")

    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except OSError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option(
    "--host",
    type=str,
    default=None,
    help="Host to bind (default: from config, else 127.0.0.1)",
)
@click.option(
    "--port",
    type=int,
    default=None,
    help="Port to bind (default: from config, else 8000)",
)
@click.option(
    "--reload",
    is_flag=True,
    default=False,
    help="Enable auto-reload for development",
)
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_DIR_HELP,
)
def serve(host: Optional[str], port: Optional[int], reload: bool, config_dir: Optional[Path]):
    """Start the Marksync API server."""
    from .config import ConfigError, ConfigManager

    try:
        cm = ConfigManager(config_dir)

        if not cm.config_file.exists():
            click.echo("Error: Configuration not found", err=True)
            click.echo(f"Run 'marksync init' to create configuration at {cm.config_dir}", err=True)
            sys.exit(1)

        try:
            app_config = cm.load_app_config()
            cm.load_env_settings()
        except ConfigError as e:
            click.echo(f"Configuration error: {e}", err=True)
            sys.exit(1)

        # The app factory runs in uvicorn and reads the directory from the environment.
        if config_dir:
            import os
            os.environ["MARKSYNC_CONFIG_DIR"] = str(config_dir)

        host = host or app_config.host
        port = port or app_config.port or 8000
        _configure_logging(app_config.log_level)

        click.echo("=" * 60)
        click.echo("Starting Marksync API server...")
        click.echo("=" * 60)
        click.echo(f"Config directory: {cm.config_dir}")
        click.echo(f"Server URL: http://{host}:{port}")
        click.echo(f"API docs: http://{host}:{port}/docs")
        click.echo("=" * 60)
        click.echo("\nPress Ctrl+C to stop the server\n")

        uvicorn.run(
            "marksync.api:create_app",
            factory=True,
            host=host,
            port=port,
            reload=reload,
            log_level=app_config.log_level.lower(),
        )

    except KeyboardInterrupt:
        click.echo("\n\nShutting down server...")
        sys.exit(0)


@cli.command()
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_DIR_HELP,
)
def sync(config_dir: Optional[Path]):
    """Sync local bookmarks with the configured remote store once."""
    from .config import ConfigError
    from .core.entity_store import StorageError
    from .core.errors import MarksyncError

    async def action(services):
        return await services.coordinator.sync()

    try:
        report = _run_with_services(config_dir, action)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except (MarksyncError, StorageError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(
        f"[OK] Sync complete: {report.pushed} pushed, {report.pulled} pulled, "
        f"{report.deleted_local} removed locally, {report.deleted_remote} removed remotely"
    )
    for tie in report.conflicts:
        click.echo(f"[WARN] Timestamp tie resolved: {tie}")
    for repair in report.repairs:
        click.echo(f"[WARN] Repaired: {repair}")


@cli.command()
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_DIR_HELP,
)
def backup(config_dir: Optional[Path]):
    """Write a snapshot of the local bookmarks."""
    from .config import ConfigError
    from .core.entity_store import StorageError
    from .core.errors import MarksyncError

    async def action(services):
        return await services.coordinator.backup(reason="cli")

    try:
        info = _run_with_services(config_dir, action)
    except (ConfigError, MarksyncError, StorageError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(
        f"[OK] Created backup {info.id} "
        f"({info.bookmark_count} bookmarks, {info.folder_count} folders, {info.tag_count} tags)"
    )


@cli.command(name="backups")
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_DIR_HELP,
)
def list_backups(config_dir: Optional[Path]):
    """List snapshots, newest first."""
    from .config import ConfigError, ConfigManager
    from .core.backup_store import BackupStore

    try:
        app_config = ConfigManager(config_dir).load_app_config()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    backups = BackupStore(app_config.backup_path(), app_config.max_backups).list()
    if not backups:
        click.echo("No backups found")
        return

    for info in backups:
        click.echo(
            f"{info.id}  {info.created_at.isoformat()}  {info.reason:<11}  "
            f"{info.bookmark_count} bookmarks, {info.folder_count} folders, {info.tag_count} tags"
        )


@cli.command()
@click.argument("backup_id")
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_DIR_HELP,
)
@click.option("--yes", is_flag=True, default=False, help="Skip the confirmation prompt")
def restore(backup_id: str, config_dir: Optional[Path], yes: bool):
    """Replace all local bookmarks with a snapshot.

    A pre-restore backup of the current state is written first.
    """
    from .config import ConfigError
    from .core.entity_store import StorageError
    from .core.errors import MarksyncError

    if not yes:
        click.confirm(f"Replace all local data with backup {backup_id}?", abort=True)

    async def action(services):
        return await services.coordinator.restore(backup_id)

    try:
        info = _run_with_services(config_dir, action)
    except (ConfigError, MarksyncError, StorageError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"[OK] Restored backup {info.id} ({info.bookmark_count} bookmarks)")


def _is_placeholder_secret(value: Optional[str]) -> bool:
    """Detect placeholder/empty secret values that should be replaced."""
    if value is None:
        return True

    normalized = value.strip().lower()
    if not normalized:
        return True

    markers = (
        "your-",
        "replace-with",
        "<random",
        "example",
        "changeme",
        "todo",
    )
    return any(marker in normalized for marker in markers)


@cli.command()
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_DIR_HELP,
)
@click.option(
    "--api-url",
    type=str,
    default=None,
    help="Optional running API URL to verify (example: http://127.0.0.1:8000)",
)
def doctor(config_dir: Optional[Path], api_url: Optional[str]):
    """Validate local setup and report actionable fixes."""
    from .config import ConfigError, ConfigManager
    from .core.backup_store import BackupStore
    from .core.errors import IntegrityError
    from .core.integrity import check_document
    from .utils.yaml_handler import YAMLError, load_document_from_file

    cm = ConfigManager(config_dir)
    failures = 0
    warnings = 0
    app_config = None
    env_settings = None

    def report(status: str, message: str, fix: Optional[str] = None) -> None:
        click.echo(f"[{status}] {message}")
        if fix:
            click.echo(f"      Fix: {fix}")

    click.echo("=" * 60)
    click.echo("Marksync doctor")
    click.echo("=" * 60)
    click.echo(f"Config directory: {cm.config_dir}")

    if cm.config_file.exists():
        report("PASS", f"Found config file: {cm.config_file}")
        try:
            app_config = cm.load_app_config()
            report("PASS", "config.yaml parsed successfully")
        except ConfigError as e:
            failures += 1
            report("FAIL", f"config.yaml validation failed: {e}")
    else:
        failures += 1
        report("FAIL", f"Missing config file: {cm.config_file}", "Run: marksync init")

    try:
        env_settings = cm.load_env_settings()
        if cm.env_file.exists():
            report("PASS", ".env parsed successfully")
    except ConfigError as e:
        failures += 1
        report("FAIL", f".env validation failed: {e}")

    if app_config is not None:
        try:
            cm.validate_data_dir(app_config)
            report("PASS", f"Data directory is accessible: {app_config.data_dir}")
        except ConfigError as e:
            failures += 1
            report("FAIL", f"Data directory is not usable: {e}", "Run: marksync init")

        data_file = app_config.data_file()
        if data_file.exists():
            try:
                document = load_document_from_file(data_file)
                check_document(document)
                report(
                    "PASS",
                    f"Data file is valid: {len(document.bookmarks)} bookmarks, "
                    f"{len(document.folders)} folders, {len(document.tags)} tags",
                )
            except (YAMLError, IntegrityError) as e:
                failures += 1
                report(
                    "FAIL",
                    f"Data file is damaged: {e}",
                    "Restore a snapshot: marksync backups, then marksync restore <id>",
                )
        else:
            report("PASS", "No data file yet (created on first start)")

        if app_config.remote_provider == "none":
            warnings += 1
            report("WARN", "No remote store configured, sync is disabled")
        elif app_config.remote_provider == "drive_folder":
            if Path(app_config.remote_path).is_dir():
                report("PASS", f"Drive folder is reachable: {app_config.remote_path}")
            else:
                failures += 1
                report(
                    "FAIL",
                    f"Drive folder does not exist: {app_config.remote_path}",
                    "Check that the cloud drive client is installed and syncing",
                )
        elif env_settings is not None and _is_placeholder_secret(env_settings.marksync_remote_token):
            warnings += 1
            report(
                "WARN",
                "MARKSYNC_REMOTE_TOKEN appears unset or placeholder",
                f"Set MARKSYNC_REMOTE_TOKEN in {cm.env_file}",
            )
        else:
            report("PASS", f"HTTP remote configured: {app_config.remote_url}")

        backups = BackupStore(app_config.backup_path(), app_config.max_backups).list()
        if backups:
            report("PASS", f"{len(backups)} backup(s), newest {backups[0].id}")
        else:
            warnings += 1
            report("WARN", "No backups yet", "Run: marksync backup")

    if api_url:
        health_url = f"{api_url.rstrip('/')}/api/v1/health"
        try:
            response = httpx.get(health_url, timeout=3.0)
            if response.status_code == 200:
                report("PASS", f"Server is reachable: {health_url}")
            else:
                failures += 1
                report(
                    "FAIL",
                    f"Server health check returned HTTP {response.status_code}: {health_url}",
                    "Start server: marksync serve --port 8000",
                )
        except httpx.HTTPError as e:
            failures += 1
            report(
                "FAIL",
                f"Server is not reachable at {health_url} ({e})",
                "Start server and ensure API URL matches --api-url",
            )
    else:
        warnings += 1
        report("WARN", "Skipped server reachability check (no --api-url provided)")

    click.echo("-" * 60)
    click.echo(f"Summary: {failures} fail, {warnings} warn")

    if failures:
        sys.exit(1)
    sys.exit(0)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
