"""
Tests for BackupManager.
"""

import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

from selfupdate_engine.backup import BackupManager

from conftest import write_files


@pytest.fixture
def app_folder(tmp_path: Path) -> Path:
    folder = tmp_path / "app"
    write_files(folder, {
        "app.exe": b"binary",
        "lib/core.dll": b"core",
        "Logs/app.log": b"log line",
        "LogsArchive/old.log": b"archived",
        "Data/cache/blob.bin": b"cache",
    })
    return folder


class TestCreateBackup:
    """Tests for create_backup."""

    def test_archive_name_and_entries(self, tmp_path: Path, app_folder: Path) -> None:
        manager = BackupManager(tmp_path / "Backups", ["Logs", "data/CACHE"], archive_root=tmp_path)

        with patch("selfupdate_engine.backup.timestamp", return_value="20240102030405"):
            backup_path = manager.create_backup(app_folder, "1.0.0.0")

        assert backup_path == tmp_path / "Backups" / "1.0.0.0_20240102030405.zip"
        with zipfile.ZipFile(backup_path) as archive:
            names = sorted(archive.namelist())
            assert archive.read("app/lib/core.dll") == b"core"

        assert names == ["app/LogsArchive/old.log", "app/app.exe", "app/lib/core.dll"]

    def test_same_second_backups_are_kept_apart(self, tmp_path: Path, app_folder: Path) -> None:
        manager = BackupManager(tmp_path / "Backups", archive_root=tmp_path)

        with patch("selfupdate_engine.backup.timestamp", return_value="20240102030405"):
            first = manager.create_backup(app_folder, "1.0.0.0")
            (app_folder / "app.exe").write_bytes(b"changed")
            second = manager.create_backup(app_folder, "1.0.0.0")

        assert first != second
        assert second.name == "1.0.0.0_20240102030405_1.zip"
        with zipfile.ZipFile(first) as archive:
            assert archive.read("app/app.exe") == b"binary"
        with zipfile.ZipFile(second) as archive:
            assert archive.read("app/app.exe") == b"changed"

        backups = manager.list_backups()
        assert [b["name"] for b in backups] == [second.name, first.name]
        assert {b["version"] for b in backups} == {"1.0.0.0"}

    def test_entries_relative_to_app_folder_outside_root(self, tmp_path: Path, app_folder: Path) -> None:
        manager = BackupManager(tmp_path / "Backups", archive_root=tmp_path / "elsewhere")

        backup_path = manager.create_backup(app_folder, "2.0")

        with zipfile.ZipFile(backup_path) as archive:
            assert "app.exe" in archive.namelist()
            assert "lib/core.dll" in archive.namelist()

    def test_backup_folder_is_created(self, tmp_path: Path, app_folder: Path) -> None:
        backup_dir = tmp_path / "nested" / "Backups"

        BackupManager(backup_dir, archive_root=tmp_path).create_backup(app_folder, "1.0")

        assert backup_dir.is_dir()

    def test_failure_propagates(self, tmp_path: Path, app_folder: Path) -> None:
        manager = BackupManager(tmp_path / "Backups", archive_root=tmp_path)

        with patch("selfupdate_engine.backup.zipfile.ZipFile", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                manager.create_backup(app_folder, "1.0")


class TestListBackups:
    """Tests for list_backups and cleanup_old_backups."""

    def make_backups(self, manager: BackupManager, app_folder: Path, stamps) -> None:
        for version, stamp in stamps:
            with patch("selfupdate_engine.backup.timestamp", return_value=stamp):
                manager.create_backup(app_folder, version)

    def test_newest_first(self, tmp_path: Path, app_folder: Path) -> None:
        manager = BackupManager(tmp_path / "Backups", archive_root=tmp_path)
        self.make_backups(manager, app_folder, [
            ("1.0.0.0", "20240101000000"),
            ("1.1.0.0", "20240301000000"),
            ("1.0.5.0", "20240201000000"),
        ])

        backups = manager.list_backups()

        assert [b["version"] for b in backups] == ["1.1.0.0", "1.0.5.0", "1.0.0.0"]
        assert backups[0]["created_at"] == "2024-03-01T00:00:00"
        assert backups[0]["size"] > 0

    def test_missing_folder(self, tmp_path: Path) -> None:
        assert BackupManager(tmp_path / "none").list_backups() == []

    def test_retention_keeps_newest(self, tmp_path: Path, app_folder: Path) -> None:
        manager = BackupManager(tmp_path / "Backups", archive_root=tmp_path)
        self.make_backups(manager, app_folder, [
            ("1.0", "20240101000000"),
            ("1.1", "20240201000000"),
            ("1.2", "20240301000000"),
        ])

        manager.cleanup_old_backups(keep_last_n=2)

        assert [b["version"] for b in manager.list_backups()] == ["1.2", "1.1"]

    def test_retention_zero_keeps_all(self, tmp_path: Path, app_folder: Path) -> None:
        manager = BackupManager(tmp_path / "Backups", archive_root=tmp_path)
        self.make_backups(manager, app_folder, [
            ("1.0", "20240101000000"),
            ("1.1", "20240201000000"),
        ])

        manager.cleanup_old_backups()

        assert len(manager.list_backups()) == 2
