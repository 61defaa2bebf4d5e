"""Self-update engine for locally installed applications."""

__version__ = "1.0.0"

from .config import ConfigError, InstallationConfig, load_config
from .engine import UpdateEngine, UpdateNotification
from .source import UpdateDescriptor, check_for_update
from .state import UpdateLockError, UpdateStage
from .version import VersionTag, get_current_version, parse_version

__all__ = [
    "__version__",
    "ConfigError",
    "InstallationConfig",
    "UpdateDescriptor",
    "UpdateEngine",
    "UpdateLockError",
    "UpdateNotification",
    "UpdateStage",
    "VersionTag",
    "check_for_update",
    "get_current_version",
    "load_config",
    "parse_version",
]
