"""Materialize update packages into the staging folder."""
import logging
import shutil
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlparse

import requests

from .source import UpdateDescriptor
from .utils import LocatorKind, classify_locator, timestamp


logger = logging.getLogger('selfupdate_engine')

DEFAULT_PACKAGE_NAME = 'update.zip'
CHUNK_SIZE = 64 * 1024


def staging_path(staging_folder: Path, file_name: str) -> Path:
    """Pick a destination in staging_folder that doesn't overwrite anything.

    The plain file name is used when free; otherwise a yyyymmddHHMMSS_ prefix
    is added, plus a counter if a download already happened this second.
    """
    destination = staging_folder / file_name
    if not destination.exists():
        return destination

    stamp = timestamp()
    destination = staging_folder / f"{stamp}_{file_name}"
    counter = 1
    while destination.exists():
        destination = staging_folder / f"{stamp}_{counter}_{file_name}"
        counter += 1
    return destination


def file_name_from_url(url: str) -> str:
    name = PurePosixPath(unquote(urlparse(url).path)).name
    return name or DEFAULT_PACKAGE_NAME


def _remove_partial(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove partial download {path}: {e}")


def download_update(url: str, staging_folder: Path,
                    timeout: Optional[float] = None) -> Optional[Path]:
    """Download an update package over HTTP."""
    destination = staging_path(staging_folder, file_name_from_url(url))

    try:
        logger.info(f"Downloading update: {url}")
        with requests.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            with open(destination, 'wb') as f:
                for chunk in response.iter_content(CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)

        logger.info(f"New update downloaded to: {destination}")
        return destination

    except (requests.RequestException, OSError) as e:
        logger.error(f"Failed to download update: {e}")
        _remove_partial(destination)
        return None


def copy_update(source: Path, staging_folder: Path) -> Optional[Path]:
    """Copy an update package from a local or network path."""
    destination = staging_path(staging_folder, source.name)

    try:
        shutil.copyfile(source, destination)
        logger.info(f"New update copied to: {destination}")
        return destination

    except OSError as e:
        logger.error(f"Failed to copy update: {e}")
        _remove_partial(destination)
        return None


def fetch_update(descriptor: UpdateDescriptor, staging_folder: Path,
                 timeout: Optional[float] = None) -> Optional[Path]:
    """Fetch the package a descriptor points to.

    Args:
        descriptor: Update descriptor from a successful check
        staging_folder: Folder receiving the package
        timeout: Optional HTTP timeout in seconds

    Returns:
        Path of the staged package, or None if fetching failed
    """
    locator = descriptor.download_url
    kind = classify_locator(locator, allow_directory=False)

    staging_folder.mkdir(parents=True, exist_ok=True)

    if kind == LocatorKind.REMOTE:
        return download_update(locator, staging_folder, timeout)
    elif kind == LocatorKind.LOCAL:
        return copy_update(Path(locator), staging_folder)

    logger.error(f"Invalid update download path or URL: {locator}")
    return None
