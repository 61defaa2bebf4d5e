"""Copy deployment-specific artifacts into the installed tree."""
import logging
import shutil
from pathlib import Path
from typing import Iterable


logger = logging.getLogger('selfupdate_engine')


def copy_production_artifacts(app_folder: Path, artifacts: Iterable[str], root_folder: Path) -> int:
    """Copy files and directories that every deployment must contain.

    Relative items are taken from root_folder and keep their relative
    location inside app_folder; absolute items land at the top of app_folder.
    Existing files are overwritten.

    Args:
        app_folder: Application folder
        artifacts: Files or directories to copy
        root_folder: Folder relative artifact paths resolve against

    Returns:
        Number of artifacts copied
    """
    artifacts = list(artifacts)
    if not artifacts:
        return 0

    logger.info("Copying production artifacts to application folder")
    copied = 0

    for item in artifacts:
        item_path = Path(item)
        source = item_path if item_path.is_absolute() else root_folder / item_path

        if source.is_file():
            relative_dir = Path() if item_path.is_absolute() else item_path.parent
            destination = app_folder / relative_dir / source.name
            if destination.exists() and destination.samefile(source):
                logger.debug(f"Artifact already in place: {destination}")
                continue
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination)
            logger.info(f"File copied from {source} to {destination}")
            copied += 1

        elif source.is_dir():
            destination = app_folder / (source.name if item_path.is_absolute() else item_path)
            if destination.exists() and destination.samefile(source):
                logger.debug(f"Artifact already in place: {destination}")
                continue
            shutil.copytree(source, destination, dirs_exist_ok=True)
            logger.info(f"Directory copied from {source} to {destination}")
            copied += 1

        else:
            logger.warning(f"File or directory not found: {source}")

    return copied
