"""Reconcile an extracted update package with the installed file tree."""
import logging
import os
import shutil
import tempfile
import zipfile
from enum import Enum
from pathlib import Path
from typing import Iterable, Tuple

from .exclusions import contains_excluded, is_excluded, resolve_prefixes
from .utils import folder_has_content


logger = logging.getLogger('selfupdate_engine')


class MergeStrategy(str, Enum):
    """How the extracted package maps onto the application folder."""
    INNER_FOLDER = "inner_folder"
    DIRECT = "direct"


def purge(app_folder: Path, exclude_paths: Iterable[str]) -> None:
    """Delete installed files and directories not covered by an exclusion.

    Directories are handled deepest first and kept when an excluded path
    lives inside them. Failures are logged per item.

    Args:
        app_folder: Application folder
        exclude_paths: Exclusion entries, relative to app_folder
    """
    app_folder = Path(os.path.abspath(app_folder))
    prefixes = resolve_prefixes(app_folder, exclude_paths)

    all_files = []
    all_dirs = []
    for path in app_folder.rglob('*'):
        if path.is_dir() and not path.is_symlink():
            all_dirs.append(path)
        else:
            all_files.append(path)

    all_dirs.sort(key=lambda d: len(str(d)), reverse=True)

    for file_path in all_files:
        if is_excluded(file_path, prefixes):
            continue
        try:
            file_path.unlink()
            logger.info(f"Deleted file: {file_path}")
        except OSError as e:
            logger.error(f"Failed to delete file: {file_path}. Exception: {e}")

    for dir_path in all_dirs:
        if is_excluded(dir_path, prefixes) or contains_excluded(dir_path, prefixes):
            continue
        try:
            dir_path.rmdir()
            logger.info(f"Deleted directory: {dir_path}")
        except OSError as e:
            logger.error(f"Failed to delete directory: {dir_path}. Exception: {e}")


def extract_package(package: Path, destination: Path) -> None:
    """Extract a zip package into destination.

    Raises:
        zipfile.BadZipFile: If the package is not a valid zip archive
    """
    with zipfile.ZipFile(package) as archive:
        archive.extractall(destination)
    logger.info(f"Extracted update to temporary folder: {destination}")


def select_merge_root(extracted: Path) -> Tuple[Path, MergeStrategy]:
    """Pick the package root from the shape of the extracted tree.

    A single top-level directory with no top-level files is unwrapped;
    any other shape is merged as is.
    """
    entries = list(extracted.iterdir())
    directories = [entry for entry in entries if entry.is_dir()]
    files = [entry for entry in entries if not entry.is_dir()]

    if len(directories) == 1 and not files:
        return directories[0], MergeStrategy.INNER_FOLDER
    return extracted, MergeStrategy.DIRECT


def merge_tree(source: Path, target: Path, move: bool = False) -> None:
    """Merge source into target at every depth.

    Missing directories are created; files that already exist at the
    destination are left untouched.

    Args:
        source: Directory to merge from
        target: Directory to merge into
        move: Move files instead of copying them
    """
    target.mkdir(parents=True, exist_ok=True)

    for entry in sorted(source.iterdir()):
        destination = target / entry.name

        if entry.is_dir() and not entry.is_symlink():
            if destination.exists() and not destination.is_dir():
                logger.warning(f"Directory was not merged because a file exists at the destination: {destination}")
                continue
            merge_tree(entry, destination, move)
            continue

        if destination.exists() or destination.is_symlink():
            logger.warning(f"File was not moved because it already exists at the destination: {destination}")
            continue

        try:
            if move:
                shutil.move(str(entry), str(destination))
            else:
                shutil.copy2(entry, destination, follow_symlinks=False)
            logger.debug(f"Placed file: {destination}")
        except OSError as e:
            logger.error(f"Failed to place file: {destination}. Exception: {e}")


def apply_update(package: Path, app_folder: Path, exclude_paths: Iterable[str]) -> MergeStrategy:
    """Replace the installed files with the contents of a package.

    The package is fully extracted before anything is deleted, so a broken
    archive leaves the installation untouched. The temporary extraction
    folder is always removed.

    Args:
        package: Staged zip package
        app_folder: Application folder
        exclude_paths: Delete exclusion entries, relative to app_folder

    Returns:
        The merge strategy that was applied
    """
    temp_folder = Path(tempfile.mkdtemp(prefix='selfupdate_'))

    try:
        extract_package(package, temp_folder)
        root, strategy = select_merge_root(temp_folder)

        if folder_has_content(app_folder):
            logger.info("Preparing for update by deleting old application files (except excluded ones).")
            purge(app_folder, exclude_paths)
        else:
            logger.info("No existing application files found. Proceeding with first-time installation.")

        app_folder.mkdir(parents=True, exist_ok=True)

        if strategy == MergeStrategy.INNER_FOLDER:
            logger.info(f"Moving files from inner folder: {root.name}")
            merge_tree(root, app_folder, move=True)
        else:
            logger.info("Copying files directly from extracted folder.")
            merge_tree(root, app_folder, move=False)

        logger.info(f"Update applied to {app_folder}")
        return strategy

    finally:
        shutil.rmtree(temp_folder, ignore_errors=True)
        logger.info("Temporary folder cleaned up.")
