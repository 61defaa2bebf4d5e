"""Version parsing and installed-version discovery."""
import logging
import re
from pathlib import Path
from typing import NamedTuple, Optional


logger = logging.getLogger('selfupdate_engine')

# Leading dotted numeric part; anything after it ("-beta", "+sha") is ignored
VERSION_PATTERN = re.compile(r'^\s*v?(\d+(?:\.\d+){0,3})(?:[-+ ].*)?\s*$')

PRODUCT_VERSION_KEY = 'ProductVersion'.encode('utf-16-le') + b'\x00\x00'
VERSION_SIDECAR_SUFFIX = '.version'


class VersionTag(NamedTuple):
    """Four-component version: major.minor.build.revision."""
    major: int = 0
    minor: int = 0
    build: int = 0
    revision: int = 0

    def __str__(self) -> str:
        return '.'.join(str(part) for part in self)


ZERO_VERSION = VersionTag()


def parse_version(version: str) -> VersionTag:
    """Parse a version string into a VersionTag.

    Missing components are treated as zero, so "1.2" == "1.2.0.0".

    Args:
        version: Version string (e.g., "1.2.0.0")

    Returns:
        Parsed VersionTag

    Raises:
        ValueError: If the string is not 1-4 dot-separated integers
    """
    if not isinstance(version, str):
        raise ValueError(f"Version must be a string, got {type(version).__name__}")

    match = VERSION_PATTERN.match(version)
    if not match:
        raise ValueError(f"Invalid version string: {version!r}")

    parts = [int(p) for p in match.group(1).split('.')]
    return VersionTag(*parts)


def read_product_version(exe_path: Path) -> Optional[str]:
    """Read the ProductVersion string from a Windows version resource.

    The StringFileInfo table stores keys and values as null-terminated
    UTF-16LE strings, the value following its key after zero padding.

    Returns:
        The raw product version string, or None if not present
    """
    data = exe_path.read_bytes()

    index = data.find(PRODUCT_VERSION_KEY)
    while index != -1 and index % 2:
        index = data.find(PRODUCT_VERSION_KEY, index + 1)
    if index == -1:
        return None

    pos = index + len(PRODUCT_VERSION_KEY)
    while data[pos:pos + 2] == b'\x00\x00':
        pos += 2

    end = pos
    while end + 1 < len(data) and data[end:end + 2] != b'\x00\x00':
        end += 2

    value = data[pos:end].decode('utf-16-le', errors='ignore').strip()
    return value or None


def _read_sidecar_version(exe_path: Path) -> Optional[str]:
    sidecar = exe_path.with_name(exe_path.name + VERSION_SIDECAR_SUFFIX)
    if not sidecar.is_file():
        return None
    value = sidecar.read_text(encoding='utf-8').strip()
    return value or None


def get_current_version(exe_path: Path) -> VersionTag:
    """Get the installed version of an executable.

    A missing executable means no prior installation and yields 0.0.0.0.

    Args:
        exe_path: Path to the installed executable

    Returns:
        Installed VersionTag
    """
    exe_path = Path(exe_path)

    if not exe_path.is_file():
        logger.warning(
            f"Executable file not found at path: {exe_path}. "
            f"Default version ({ZERO_VERSION}) will be used."
        )
        return ZERO_VERSION

    raw_version = read_product_version(exe_path) or _read_sidecar_version(exe_path)

    if raw_version is None:
        logger.warning(f"No version metadata found in {exe_path}, using {ZERO_VERSION}")
        return ZERO_VERSION

    try:
        version = parse_version(raw_version)
    except ValueError:
        logger.warning(f"Unparseable product version {raw_version!r} in {exe_path}, using {ZERO_VERSION}")
        return ZERO_VERSION

    logger.info(f"Successfully retrieved current version from executable: {version} - {exe_path}")
    return version
