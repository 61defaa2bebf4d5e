"""Run lock and stage tracking for the self-update engine."""
import hashlib
import json
import logging
import os
import sys
import tempfile
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


logger = logging.getLogger('selfupdate_engine')


class UpdateStage(str, Enum):
    """States of one update run."""
    IDLE = "idle"
    CHECKING = "checking"
    NO_UPDATE = "no_update"
    UPDATE_FOUND = "update_found"
    STOPPING = "stopping"
    FETCHING = "fetching"
    BACKING_UP = "backing_up"
    APPLYING = "applying"
    RESTARTING = "restarting"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UpdateStage.NO_UPDATE, UpdateStage.DONE, UpdateStage.FAILED)


class UpdateLockError(Exception):
    """Exception raised when another run holds the lock."""
    pass


def lock_file_for(app_folder: Path, lock_dir: Optional[Path] = None) -> Path:
    """Lock file path keyed by the application folder."""
    key = os.path.normcase(os.path.abspath(app_folder)).encode('utf-8')
    digest = hashlib.md5(key).hexdigest()[:16]
    return Path(lock_dir or tempfile.gettempdir()) / f"selfupdate_{digest}.lock"


class UpdateLock:
    """Advisory OS file lock serialising update runs on one installation."""

    def __init__(self, app_folder: Path, lock_dir: Optional[Path] = None):
        self.lock_file = lock_file_for(app_folder, lock_dir)
        self._handle = None

    @property
    def locked(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        """Acquire the lock without blocking.

        Raises:
            UpdateLockError: If another run holds the lock
        """
        if self._handle is not None:
            return

        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_file, 'a+')

        try:
            self._lock(handle)
        except OSError as e:
            handle.close()
            raise UpdateLockError(f"Another update run holds {self.lock_file}") from e

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()

        self._handle = handle
        logger.debug(f"Update lock acquired: {self.lock_file}")

    def release(self) -> None:
        """Release the lock if held."""
        if self._handle is None:
            return

        try:
            self._unlock(self._handle)
        except OSError as e:
            logger.warning(f"Failed to unlock {self.lock_file}: {e}")
        finally:
            self._handle.close()
            self._handle = None
            logger.debug(f"Update lock released: {self.lock_file}")

    def is_locked(self) -> bool:
        """Check whether any run currently holds the lock."""
        if self._handle is not None:
            return True
        if not self.lock_file.exists():
            return False

        with open(self.lock_file, 'a+') as handle:
            try:
                self._lock(handle)
            except OSError:
                return True
            self._unlock(handle)
        return False

    @staticmethod
    def _lock(handle) -> None:
        if sys.platform == 'win32':
            import msvcrt
            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)

    @staticmethod
    def _unlock(handle) -> None:
        if sys.platform == 'win32':
            import msvcrt
            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
        else:
            import fcntl
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def __enter__(self) -> 'UpdateLock':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class StateManager:
    """Records the stage of the current or last update run."""

    def __init__(self, state_file: Path):
        """Initialize state manager.

        Args:
            state_file: Path to state.json file
        """
        self.state_file = state_file
        self.state: Dict[str, Any] = {}

    def load(self) -> Optional[Dict[str, Any]]:
        """Load state from file with checksum verification.

        Returns:
            State dictionary if valid, None otherwise
        """
        if not self.state_file.exists():
            return None

        try:
            with open(self.state_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            if 'checksum' in data:
                state_data = {k: v for k, v in data.items() if k != 'checksum'}
                if data['checksum'] != self._calculate_state_checksum(state_data):
                    logger.warning("State file checksum mismatch, ignoring state")
                    return None

            self.state = data
            return self.state

        except (OSError, ValueError, AttributeError) as e:
            logger.error(f"Failed to load state file: {e}")
            return None

    def save(self, state: Dict[str, Any]) -> None:
        """Save state to file with checksum."""
        state = {k: v for k, v in state.items() if k != 'checksum'}
        state['last_updated'] = datetime.now().isoformat()
        state['checksum'] = self._calculate_state_checksum(state)

        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.state_file.with_suffix('.tmp')
        with open(tmp_file, 'w', encoding='utf-8') as f:
            json.dump(state, f, indent=2)
        os.replace(tmp_file, self.state_file)

        self.state = state
        logger.debug(f"State saved: {state.get('stage', 'unknown')}")

    def update(self, **kwargs) -> None:
        """Update specific state fields."""
        self.state.update(kwargs)
        self.save(self.state)

    def begin_run(self) -> None:
        """Start a fresh record, warning about an interrupted previous run."""
        previous = self.load()
        if previous and self.is_update_in_progress():
            logger.warning(
                f"Previous update run did not finish (last stage: {previous.get('stage')}); "
                f"the installation may be partially updated"
            )
        self.save({
            'stage': UpdateStage.IDLE.value,
            'started_at': datetime.now().isoformat()
        })

    def set_stage(self, stage: UpdateStage, **details) -> None:
        """Record a stage transition."""
        fields = dict(details, stage=stage.value)
        if stage.is_terminal:
            fields['completed_at'] = datetime.now().isoformat()
        self.update(**fields)

    @property
    def stage(self) -> Optional[UpdateStage]:
        value = self.state.get('stage')
        try:
            return UpdateStage(value) if value else None
        except ValueError:
            return None

    def is_update_in_progress(self) -> bool:
        """Check if the recorded run stopped before a terminal stage."""
        stage = self.stage
        return stage is not None and not stage.is_terminal

    def _calculate_state_checksum(self, state: Dict[str, Any]) -> str:
        # Sort keys for consistent checksum
        state_json = json.dumps(state, sort_keys=True)
        return hashlib.md5(state_json.encode()).hexdigest()
