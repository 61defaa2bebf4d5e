"""Main update engine implementation."""
import logging
import sys
from pathlib import Path
from typing import Callable, NamedTuple, Optional

from .artifacts import copy_production_artifacts
from .backup import BackupManager
from .config import InstallationConfig
from .fetcher import fetch_update
from .process import ApplicationManager
from .reconcile import apply_update
from .source import UpdateDescriptor, check_for_update
from .state import StateManager, UpdateLock, UpdateLockError, UpdateStage
from .utils import ensure_directories
from .version import VersionTag, get_current_version


logger = logging.getLogger('selfupdate_engine')

STATE_FILE_NAME = 'state.json'


class UpdateNotification(NamedTuple):
    """What a calling surface needs to offer an update."""
    available: bool
    version: Optional[str] = None
    current_version: Optional[str] = None


class UpdateEngine:
    """Runs one check-and-apply cycle against an installation."""

    def __init__(self, config: InstallationConfig,
                 application_manager: Optional[ApplicationManager] = None,
                 exit_func: Callable[[int], None] = sys.exit,
                 lock_dir: Optional[Path] = None):
        """Initialize update engine.

        Args:
            config: Resolved installation configuration
            application_manager: Process controller (default: built from config)
            exit_func: Called to end the current process after a direct restart
            lock_dir: Directory holding the run lock file (default: system temp)
        """
        self.config = config
        self.exit_func = exit_func
        self.stage = UpdateStage.IDLE

        self.state_manager = StateManager(config.updates_folder / STATE_FILE_NAME)
        self.backup_manager = BackupManager(
            config.backups_folder,
            config.exclusions.backup,
            archive_root=config.base_dir
        )
        self.application_manager = application_manager or ApplicationManager(
            pool_command=config.pool_command,
            elevate_pool_command=config.elevate_pool_command,
            pool_settle_seconds=config.pool_settle_seconds,
            startup_timeout_seconds=config.startup_timeout_seconds,
            health_check_url=config.health_check_url
        )
        self.lock = UpdateLock(config.application_folder, lock_dir)

    def current_version(self) -> VersionTag:
        return get_current_version(self.config.exe_path)

    def check(self) -> UpdateNotification:
        """Check for an update without applying it."""
        current_version = self.current_version()
        descriptor = check_for_update(
            self.config.update_check_url,
            current_version,
            self.config.request_timeout
        )

        if descriptor is None:
            return UpdateNotification(False, None, str(current_version))
        return UpdateNotification(True, descriptor.version, str(current_version))

    def run(self) -> bool:
        """Execute one update cycle.

        Returns:
            True if the run finished (with or without an update), False otherwise
        """
        try:
            self.lock.acquire()
        except UpdateLockError as e:
            logger.error(f"Update refused: {e}")
            return False

        try:
            self.state_manager.begin_run()
            return self._run_pipeline()

        except Exception as e:
            logger.error(f"Update failed with exception: {e}", exc_info=True)
            self._set_stage(UpdateStage.FAILED, error=str(e))
            return False

        finally:
            self.lock.release()

    def _run_pipeline(self) -> bool:
        config = self.config
        logger.info("Update process started.")

        self._set_stage(UpdateStage.CHECKING)
        current_version = self.current_version()
        descriptor = check_for_update(config.update_check_url, current_version, config.request_timeout)

        if descriptor is None:
            self._set_stage(UpdateStage.NO_UPDATE, current_version=str(current_version))
            logger.info("No update to apply. Update process completed successfully.")
            return True

        self._set_stage(
            UpdateStage.UPDATE_FOUND,
            current_version=str(current_version),
            target_version=descriptor.version
        )

        if config.auto_stop_application:
            self._set_stage(UpdateStage.STOPPING)
            self._stop_application()
        else:
            logger.info("Auto-stop disabled, application left running")

        self._set_stage(UpdateStage.FETCHING)
        package = self._fetch(descriptor)

        self._set_stage(UpdateStage.BACKING_UP)
        self._backup_or_initial_setup(current_version)

        self._set_stage(UpdateStage.APPLYING)
        self._apply(package)

        if config.auto_restart_application:
            self._set_stage(UpdateStage.RESTARTING)
            self._restart_application()
        else:
            logger.info("Auto-restart disabled, application left stopped")

        self._set_stage(UpdateStage.DONE)
        logger.info("Update process completed successfully.")
        return True

    def _stop_application(self) -> None:
        if self.config.uses_pool:
            self.application_manager.stop_pool(self.config.application_pool_name)
        else:
            self.application_manager.stop_application(self.config.exe_file_name)

    def _fetch(self, descriptor: UpdateDescriptor) -> Optional[Path]:
        ensure_directories(self.config.updates_folder, self.config.backups_folder)

        package = fetch_update(descriptor, self.config.updates_folder, self.config.request_timeout)
        if package is None:
            logger.warning("No update package available; the run continues without new files")
        else:
            self.state_manager.update(package=str(package))
        return package

    def _backup_or_initial_setup(self, current_version: VersionTag) -> Optional[Path]:
        app_folder = self.config.application_folder

        if not app_folder.is_dir() or not self.backup_manager.get_files_to_backup(app_folder):
            logger.info("Performing initial setup.")
            return None

        logger.info(f"Backing up current version: {current_version}")
        backup_path = self.backup_manager.create_backup(app_folder, str(current_version))
        self.state_manager.update(backup=str(backup_path))
        return backup_path

    def _apply(self, package: Optional[Path]) -> None:
        config = self.config

        if package is not None:
            logger.info("Applying the latest update.")
            strategy = apply_update(package, config.application_folder, config.exclusions.delete)
            self.state_manager.update(merge_strategy=strategy.value)

        config.application_folder.mkdir(parents=True, exist_ok=True)
        copy_production_artifacts(config.application_folder, config.production_artifacts, config.base_dir)

        if config.backup_retention:
            self.backup_manager.cleanup_old_backups(config.backup_retention)

    def _restart_application(self) -> None:
        if self.config.uses_pool:
            self.application_manager.start_pool(self.config.application_pool_name)
            return

        ready = self.application_manager.restart_application(self.config.exe_path)
        self._set_stage(UpdateStage.DONE, restarted=ready)
        logger.info("Update process completed; handing over to the restarted application.")

        # The updater's lifetime ends with a direct restart
        self.lock.release()
        self.exit_func(0 if ready else 1)

    def _set_stage(self, stage: UpdateStage, **details) -> None:
        self.stage = stage
        logger.debug(f"Stage: {stage.value}")
        try:
            self.state_manager.set_stage(stage, **details)
        except OSError as e:
            logger.warning(f"Failed to record stage {stage.value}: {e}")
