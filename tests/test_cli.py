"""Tests for CLI commands."""

import tempfile
from pathlib import Path

import pytest
from click.testing import CliRunner

from marksync.cli import cli
from marksync.config import ConfigManager
from marksync.models.config import AppConfig


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for key in ("MARKSYNC_REMOTE_TOKEN", "MARKSYNC_CONFIG_DIR"):
        monkeypatch.delenv(key, raising=False)


def _write_valid_setup(root: Path, remote: bool = True) -> Path:
    """Create a minimal valid setup and return its config directory."""
    config_dir = root / ".marksync"
    drive = root / "drive"
    drive.mkdir(parents=True, exist_ok=True)
    (root / "data").mkdir(parents=True, exist_ok=True)

    cm = ConfigManager(config_dir)
    config = AppConfig(data_dir=str(root / "data"), seed_default_folders=False)
    if remote:
        config = config.model_copy(
            update={"remote_provider": "drive_folder", "remote_path": str(drive)}
        )
    cm.save_app_config(config)
    cm.create_env_file()
    return config_dir


class TestCliInit:
    def test_init_creates_configuration(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_dir = Path(temp_dir) / ".marksync"
            drive = Path(temp_dir) / "drive"
            runner = CliRunner()

            result = runner.invoke(
                cli,
                [
                    "init",
                    "--config-dir", str(config_dir),
                    "--remote-provider", "drive-folder",
                    "--remote-path", str(drive),
                ],
            )

            assert result.exit_code == 0, result.output
            assert "[SUCCESS]" in result.output
            config = ConfigManager(config_dir).load_app_config()
            assert config.remote_provider == "drive_folder"
            assert Path(config.data_dir).is_dir()
            assert drive.is_dir()
            assert (config_dir / ".env").exists()

    def test_init_http_warns_without_token(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_dir = Path(temp_dir) / ".marksync"
            runner = CliRunner()

            result = runner.invoke(
                cli,
                [
                    "init",
                    "--config-dir", str(config_dir),
                    "--remote-provider", "http",
                    "--remote-url", "https://sync.example.com",
                ],
            )

            assert result.exit_code == 0, result.output
            assert "MARKSYNC_REMOTE_TOKEN" in result.output


class TestCliSyncAndBackup:
    def test_sync_against_drive_folder(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_dir = _write_valid_setup(Path(temp_dir))
            runner = CliRunner()

            result = runner.invoke(cli, ["sync", "--config-dir", str(config_dir)])

            assert result.exit_code == 0, result.output
            assert "[OK] Sync complete" in result.output
            assert (Path(temp_dir) / "drive" / "bookmarks.json").exists()

    def test_sync_without_remote_fails(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_dir = _write_valid_setup(Path(temp_dir), remote=False)
            runner = CliRunner()

            result = runner.invoke(cli, ["sync", "--config-dir", str(config_dir)])

            assert result.exit_code == 1
            assert "No remote store configured" in result.output

    def test_missing_config_fails(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            runner = CliRunner()
            result = runner.invoke(cli, ["backup", "--config-dir", str(Path(temp_dir) / "none")])

            assert result.exit_code == 1
            assert "marksync init" in result.output

    def test_backup_list_restore(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_dir = _write_valid_setup(Path(temp_dir))
            runner = CliRunner()

            created = runner.invoke(cli, ["backup", "--config-dir", str(config_dir)])
            assert created.exit_code == 0, created.output
            backup_id = created.output.split("Created backup ")[1].split()[0]

            listed = runner.invoke(cli, ["backups", "--config-dir", str(config_dir)])
            assert backup_id in listed.output

            restored = runner.invoke(
                cli, ["restore", backup_id, "--yes", "--config-dir", str(config_dir)]
            )
            assert restored.exit_code == 0, restored.output
            assert f"Restored backup {backup_id}" in restored.output

    def test_restore_unknown_backup(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_dir = _write_valid_setup(Path(temp_dir))
            runner = CliRunner()

            result = runner.invoke(
                cli,
                ["restore", "20260101T000000000000Z-abcdef", "--yes", "--config-dir", str(config_dir)],
            )

            assert result.exit_code == 1
            assert "Backup not found" in result.output

    def test_empty_backup_list(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_dir = _write_valid_setup(Path(temp_dir))
            result = CliRunner().invoke(cli, ["backups", "--config-dir", str(config_dir)])
            assert "No backups found" in result.output


class TestCliDoctor:
    """Test marksync doctor command."""

    def test_doctor_passes_with_valid_setup(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_dir = _write_valid_setup(Path(temp_dir))
            runner = CliRunner()

            result = runner.invoke(cli, ["doctor", "--config-dir", str(config_dir)])

            assert result.exit_code == 0, result.output
            assert "[PASS] config.yaml parsed successfully" in result.output
            assert "[PASS] Drive folder is reachable" in result.output

    def test_doctor_fails_when_drive_folder_missing(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_dir = _write_valid_setup(Path(temp_dir))
            (Path(temp_dir) / "drive").rmdir()
            runner = CliRunner()

            result = runner.invoke(cli, ["doctor", "--config-dir", str(config_dir)])

            assert result.exit_code == 1
            assert "Drive folder does not exist" in result.output

    def test_doctor_fails_on_damaged_data_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_dir = _write_valid_setup(Path(temp_dir))
            (Path(temp_dir) / "data" / "bookmarks.yaml").write_text(
                "bookmarks: [unclosed", encoding="utf-8"
            )
            runner = CliRunner()

            result = runner.invoke(cli, ["doctor", "--config-dir", str(config_dir)])

            assert result.exit_code == 1
            assert "Data file is damaged" in result.output

    def test_doctor_fails_without_config(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            runner = CliRunner()
            result = runner.invoke(cli, ["doctor", "--config-dir", str(Path(temp_dir) / "none")])

            assert result.exit_code == 1
            assert "Missing config file" in result.output
