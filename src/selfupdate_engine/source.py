"""Update discovery from a remote endpoint or a local/network path."""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .utils import LocatorKind, classify_locator
from .version import VersionTag, parse_version


logger = logging.getLogger('selfupdate_engine')

DIRECTORY_DESCRIPTOR_NAME = 'update.json'


class UpdateDescriptor(BaseModel):
    """Metadata of one available update."""
    model_config = ConfigDict(extra='allow', populate_by_name=True)

    version: str = Field(validation_alias=AliasChoices('version', 'Version'))
    download_url: str = Field(
        validation_alias=AliasChoices('downloadUrl', 'DownloadUrl', 'download_url')
    )

    @property
    def version_tag(self) -> VersionTag:
        return parse_version(self.version)


def parse_descriptor(payload: Any) -> UpdateDescriptor:
    """Parse a decoded JSON body into an UpdateDescriptor.

    Raises:
        ValueError: If the payload is not a valid descriptor
    """
    if not isinstance(payload, dict):
        raise ValueError("Update descriptor must be a JSON object")
    try:
        return UpdateDescriptor.model_validate(payload)
    except ValidationError as e:
        raise ValueError(f"Invalid update descriptor: {e}") from e


def _newer_than(descriptor: UpdateDescriptor, current_version: VersionTag) -> bool:
    latest_version = descriptor.version_tag
    if latest_version > current_version:
        logger.info(f"Update available: {latest_version} (current: {current_version})")
        return True
    logger.info(f"Current version {current_version} is up to date (latest: {latest_version})")
    return False


def check_remote(url: str, current_version: VersionTag,
                 timeout: Optional[float] = None) -> Optional[UpdateDescriptor]:
    """Check an HTTP endpoint for an update descriptor."""
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        descriptor = parse_descriptor(response.json())

        if _newer_than(descriptor, current_version):
            return descriptor

        logger.info("No update available from URL.")
        return None

    except (requests.RequestException, ValueError) as e:
        logger.error(f"Failed to check for update from URL: {e}")
        return None


def check_local(path: Path, current_version: VersionTag) -> Optional[UpdateDescriptor]:
    """Check a local or network path for an update descriptor."""
    if path.is_dir():
        path = path / DIRECTORY_DESCRIPTOR_NAME

    try:
        if not path.is_file():
            logger.warning(f"Update info file not found: {path}")
            return None

        with open(path, 'r', encoding='utf-8') as f:
            payload: Dict[str, Any] = json.load(f)

        descriptor = parse_descriptor(payload)

        if _newer_than(descriptor, current_version):
            return descriptor

        logger.info("No update available from local/network path.")
        return None

    except (OSError, ValueError) as e:
        logger.error(f"Failed to check for update from local path: {e}")
        return None


def check_for_update(locator: str, current_version: VersionTag,
                     timeout: Optional[float] = None) -> Optional[UpdateDescriptor]:
    """Check whether a newer version is published at locator.

    Failures are logged and reported the same way as "no update".

    Args:
        locator: http(s) URL or local/network path of the descriptor
        current_version: Installed version
        timeout: Optional HTTP timeout in seconds

    Returns:
        The descriptor if it is strictly newer than current_version, else None
    """
    kind = classify_locator(locator)

    if kind == LocatorKind.REMOTE:
        return check_remote(locator, current_version, timeout)
    elif kind == LocatorKind.LOCAL:
        return check_local(Path(locator), current_version)

    logger.error(f"Invalid update path or URL: {locator}")
    return None
