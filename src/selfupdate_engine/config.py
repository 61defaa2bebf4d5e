"""Installation configuration for the self-update engine."""
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exclusions import ExclusionSet
from .utils import resolve_path


logger = logging.getLogger('selfupdate_engine')

DEFAULT_CONFIG_FILE = 'updateservice.yml'
DEFAULT_LOGS_FOLDER = 'Logs'
DEFAULT_UPDATES_FOLDER = 'Updates'
DEFAULT_BACKUPS_FOLDER = 'Backups'


class ConfigError(Exception):
    """Exception raised when the configuration cannot be loaded."""
    pass


def launcher_paths() -> List[str]:
    """Files the updater itself runs from, which an update must not delete.

    Covers this package, the update_manager launcher next to it and the
    virtual environment the updater runs in, if any.
    """
    package_dir = Path(os.path.abspath(__file__)).parent
    paths = [str(package_dir), str(package_dir.parent / 'update_manager.py')]
    if sys.prefix != sys.base_prefix:
        paths.append(os.path.abspath(sys.prefix))
    return paths


class ConfigDocument(BaseModel):
    """Raw configuration document, before defaults and path resolution."""
    model_config = ConfigDict(extra='forbid')

    exe_file_name: str = Field(min_length=1)
    update_check_url: str = Field(min_length=1)
    logs_folder: Optional[str] = None
    updates_folder: Optional[str] = None
    backups_folder: Optional[str] = None
    application_folder: Optional[str] = None
    production_artifacts: Optional[List[str]] = None
    exclude_from_backup: Optional[List[str]] = None
    exclude_from_delete: Optional[List[str]] = None
    auto_stop_application: Optional[bool] = None
    auto_restart_application: Optional[bool] = None
    application_pool_name: Optional[str] = None
    pool_command: Optional[List[str]] = None
    elevate_pool_command: bool = True
    pool_settle_seconds: float = Field(default=5.0, ge=0)
    health_check_url: Optional[str] = None
    startup_timeout_seconds: float = Field(default=5.0, ge=0)
    backup_retention: int = Field(default=0, ge=0)
    request_timeout: Optional[float] = Field(default=None, gt=0)


class InstallationConfig(BaseModel):
    """Resolved, immutable configuration consumed by the engine."""
    model_config = ConfigDict(frozen=True)

    exe_file_name: str
    update_check_url: str
    base_dir: Path
    logs_folder: Path
    updates_folder: Path
    backups_folder: Path
    application_folder: Path
    production_artifacts: Tuple[str, ...] = ()
    exclude_from_backup: Tuple[str, ...] = ()
    exclude_from_delete: Tuple[str, ...] = ()
    auto_stop_application: bool = True
    auto_restart_application: bool = True
    application_pool_name: Optional[str] = None
    pool_command: Optional[Tuple[str, ...]] = None
    elevate_pool_command: bool = True
    pool_settle_seconds: float = 5.0
    health_check_url: Optional[str] = None
    startup_timeout_seconds: float = 5.0
    backup_retention: int = 0
    request_timeout: Optional[float] = None

    @property
    def exe_path(self) -> Path:
        """Absolute path of the installed executable."""
        return self.application_folder / self.exe_file_name

    @property
    def uses_pool(self) -> bool:
        return bool(self.application_pool_name and self.application_pool_name.strip())

    @property
    def exclusions(self) -> ExclusionSet:
        return ExclusionSet(
            backup=self.exclude_from_backup,
            delete=self.exclude_from_delete,
        )

    @classmethod
    def from_document(cls, document: Dict[str, Any], base_dir: Optional[Path] = None,
                      config_file: Optional[Path] = None) -> 'InstallationConfig':
        """Build a resolved configuration from a raw document.

        Args:
            document: Parsed configuration mapping
            base_dir: Directory relative folders resolve against (default: cwd)
            config_file: Configuration file, protected from deletion when given

        Raises:
            ConfigError: If the document fails validation
        """
        try:
            raw = ConfigDocument.model_validate(document)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

        base_dir = resolve_path(base_dir or Path.cwd(), Path.cwd())

        logs_folder = resolve_path(raw.logs_folder or DEFAULT_LOGS_FOLDER, base_dir)
        updates_folder = resolve_path(raw.updates_folder or DEFAULT_UPDATES_FOLDER, base_dir)
        backups_folder = resolve_path(raw.backups_folder or DEFAULT_BACKUPS_FOLDER, base_dir)
        application_folder = resolve_path(raw.application_folder or base_dir, base_dir)

        # The engine never backs up or deletes its own working areas
        protected = [str(updates_folder), str(backups_folder), str(logs_folder)]

        exclude_from_backup = list(raw.exclude_from_backup or []) + protected
        exclude_from_delete = list(raw.exclude_from_delete or []) + protected
        exclude_from_delete += launcher_paths()
        if config_file is not None:
            exclude_from_delete.append(str(resolve_path(config_file, Path.cwd())))

        return cls(
            exe_file_name=raw.exe_file_name,
            update_check_url=raw.update_check_url,
            base_dir=base_dir,
            logs_folder=logs_folder,
            updates_folder=updates_folder,
            backups_folder=backups_folder,
            application_folder=application_folder,
            production_artifacts=tuple(raw.production_artifacts or ()),
            exclude_from_backup=tuple(exclude_from_backup),
            exclude_from_delete=tuple(exclude_from_delete),
            auto_stop_application=True if raw.auto_stop_application is None else raw.auto_stop_application,
            auto_restart_application=True if raw.auto_restart_application is None else raw.auto_restart_application,
            application_pool_name=raw.application_pool_name,
            pool_command=tuple(raw.pool_command) if raw.pool_command else None,
            elevate_pool_command=raw.elevate_pool_command,
            pool_settle_seconds=raw.pool_settle_seconds,
            health_check_url=raw.health_check_url,
            startup_timeout_seconds=raw.startup_timeout_seconds,
            backup_retention=raw.backup_retention,
            request_timeout=raw.request_timeout,
        )


def load_config(config_path: Path, base_dir: Optional[Path] = None) -> InstallationConfig:
    """Load and resolve the configuration file.

    Args:
        config_path: Path to a YAML or JSON configuration document
        base_dir: Directory relative folders resolve against (default: cwd)

    Returns:
        Resolved InstallationConfig

    Raises:
        ConfigError: If the file is missing, malformed or invalid
    """
    config_path = Path(config_path)

    if not config_path.is_file():
        raise ConfigError(f"Configuration file not found at path: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            if config_path.suffix.lower() == '.json':
                document = json.load(f)
            else:
                document = yaml.safe_load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to parse configuration file {config_path}: {e}") from e

    if not isinstance(document, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping")

    config = InstallationConfig.from_document(document, base_dir, config_file=config_path)
    logger.debug(f"Configuration loaded from {config_path}")
    return config
