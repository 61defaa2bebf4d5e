"""Backup management for the self-update engine."""
import logging
import os
import re
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .exclusions import is_excluded, resolve_prefixes
from .utils import TIMESTAMP_FORMAT, timestamp


logger = logging.getLogger('selfupdate_engine')

BACKUP_SUFFIX = '.zip'
# <version>_<yyyymmddHHMMSS>[_<counter>]
BACKUP_NAME_PATTERN = re.compile(r'^(?P<version>.+)_(?P<stamp>\d{14})(?:_(?P<counter>\d+))?$')


class BackupManager:
    """Creates and lists zip snapshots of the application folder."""

    def __init__(self, backup_dir: Path, exclude_paths: Iterable[str] = (),
                 archive_root: Optional[Path] = None):
        """Initialize backup manager.

        Args:
            backup_dir: Directory receiving the backup archives
            exclude_paths: Exclusion entries, relative to the application folder
            archive_root: Directory entry names are made relative to (default: cwd)
        """
        self.backup_dir = Path(backup_dir)
        self.exclude_paths = tuple(exclude_paths)
        self.archive_root = Path(archive_root) if archive_root else Path.cwd()

    def create_backup(self, app_folder: Path, version: str) -> Path:
        """Snapshot the application folder into <version>_<timestamp>.zip.

        Errors are not caught here: a failed backup must stop the update.

        Args:
            app_folder: Application folder to back up
            version: Version label of the installation being backed up

        Returns:
            Path to the created archive
        """
        app_folder = Path(os.path.abspath(app_folder))
        self.backup_dir.mkdir(parents=True, exist_ok=True)

        backup_path = self._backup_path(version)

        files = self.get_files_to_backup(app_folder)
        logger.info(f"Creating backup: {backup_path.name} ({len(files)} files)")

        with zipfile.ZipFile(backup_path, 'x', compression=zipfile.ZIP_DEFLATED) as archive:
            for file_path in files:
                archive.write(file_path, self._entry_name(file_path, app_folder))

        logger.info(f"Backup created at {backup_path}")
        return backup_path

    def _backup_path(self, version: str) -> Path:
        # Archives are write-once: a second run in the same second gets a counter
        stamp = timestamp()
        backup_path = self.backup_dir / f"{version}_{stamp}{BACKUP_SUFFIX}"
        counter = 1
        while backup_path.exists():
            backup_path = self.backup_dir / f"{version}_{stamp}_{counter}{BACKUP_SUFFIX}"
            counter += 1
        return backup_path

    def get_files_to_backup(self, app_folder: Path) -> List[Path]:
        """List every file under app_folder not covered by an exclusion."""
        prefixes = resolve_prefixes(app_folder, self.exclude_paths)

        files = []
        for file_path in sorted(app_folder.rglob('*')):
            if not file_path.is_file():
                continue
            if is_excluded(file_path, prefixes):
                logger.debug(f"Excluded from backup: {file_path}")
                continue
            files.append(file_path)
        return files

    def _entry_name(self, file_path: Path, app_folder: Path) -> str:
        # Entries are relative to the working directory; an application folder
        # outside it falls back to paths relative to the folder itself.
        root = Path(os.path.abspath(self.archive_root))
        try:
            return file_path.relative_to(root).as_posix()
        except ValueError:
            return file_path.relative_to(app_folder).as_posix()

    def list_backups(self) -> List[Dict[str, Any]]:
        """List available backups, newest first.

        Returns:
            List of backup information dictionaries
        """
        if not self.backup_dir.is_dir():
            return []

        backups = []
        order = {}

        for backup_path in self.backup_dir.glob(f'*{BACKUP_SUFFIX}'):
            if not backup_path.is_file():
                continue

            version, created_at, counter = self._parse_name(backup_path)
            order[backup_path.name] = (created_at, counter)

            backups.append({
                'name': backup_path.name,
                'path': str(backup_path),
                'version': version,
                'created_at': created_at,
                'size': backup_path.stat().st_size
            })

        backups.sort(key=lambda x: order[x['name']], reverse=True)
        return backups

    @staticmethod
    def _parse_name(backup_path: Path) -> Tuple[str, str, int]:
        match = BACKUP_NAME_PATTERN.match(backup_path.stem)
        if match:
            try:
                created_at = datetime.strptime(match.group('stamp'), TIMESTAMP_FORMAT)
            except ValueError:
                pass
            else:
                return match.group('version'), created_at.isoformat(), int(match.group('counter') or 0)

        created_at = datetime.fromtimestamp(backup_path.stat().st_mtime)
        return backup_path.stem, created_at.isoformat(), 0

    def cleanup_old_backups(self, keep_last_n: int = 0) -> None:
        """Remove old backups, keeping only the most recent N.

        Args:
            keep_last_n: Number of recent backups to keep (0 = keep all)
        """
        if keep_last_n == 0:
            logger.info("Backup cleanup disabled (keep_last_n=0)")
            return

        backups = self.list_backups()

        if len(backups) <= keep_last_n:
            logger.info(f"No backups to clean up ({len(backups)} <= {keep_last_n})")
            return

        for backup in backups[keep_last_n:]:
            logger.info(f"Removing old backup: {backup['name']}")
            try:
                Path(backup['path']).unlink()
            except OSError as e:
                logger.warning(f"Failed to remove backup {backup['name']}: {e}")
