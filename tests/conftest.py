"""
Pytest configuration and shared fixtures for the self-updater tests.
"""

import json
import zipfile
from pathlib import Path
from typing import Dict

import pytest

from selfupdate_engine.config import InstallationConfig


def make_zip(path: Path, files: Dict[str, bytes]) -> Path:
    """Write a zip archive with the given entry name -> content mapping."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return path


def write_files(root: Path, files: Dict[str, bytes]) -> None:
    """Create files under root from a relative path -> content mapping."""
    for name, content in files.items():
        target = root / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)


def write_descriptor(path: Path, version: str, download_url: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"version": version, "downloadUrl": download_url}))
    return path


@pytest.fixture
def base_dir(tmp_path: Path) -> Path:
    base = tmp_path / "deploy"
    base.mkdir()
    return base


@pytest.fixture
def make_config(base_dir: Path):
    """Factory building a resolved configuration rooted in base_dir."""

    def factory(**overrides) -> InstallationConfig:
        document = {
            "exe_file_name": "app.exe",
            "update_check_url": str(base_dir / "feed" / "update.json"),
            "application_folder": "app",
            "pool_settle_seconds": 0,
            "startup_timeout_seconds": 0,
        }
        document.update(overrides)
        return InstallationConfig.from_document(document, base_dir=base_dir)

    return factory
