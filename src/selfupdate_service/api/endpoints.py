"""API endpoints for the update service."""
import asyncio
import logging
import time
from typing import List

from fastapi import APIRouter, HTTPException
from sse_starlette.sse import EventSourceResponse

from selfupdate_engine.backup import BackupManager
from selfupdate_engine.config import ConfigError, InstallationConfig
from selfupdate_engine.engine import STATE_FILE_NAME, UpdateEngine
from selfupdate_engine.state import StateManager, UpdateLock, UpdateStage
from update_manager import launch_apply
from ..config import config
from .models import ApplyUpdateResponse, BackupInfo, CheckUpdateResponse, UpdateStatus


router = APIRouter(prefix="/api")
logger = logging.getLogger('selfupdate_service')


def _installation() -> InstallationConfig:
    try:
        return config.installation()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        raise HTTPException(status_code=500, detail=f"Configuration error: {e}")


def _read_status(installation: InstallationConfig) -> UpdateStatus:
    state = StateManager(installation.updates_folder / STATE_FILE_NAME).load() or {}
    running = UpdateLock(installation.application_folder).is_locked()

    fields = {key: state.get(key) for key in UpdateStatus.model_fields if key in state}
    fields['stage'] = fields.get('stage') or UpdateStage.IDLE.value
    fields['running'] = running
    return UpdateStatus(**fields)


@router.get("/check-update", response_model=CheckUpdateResponse)
def check_update():
    """Check whether a newer version is published."""
    notification = UpdateEngine(_installation()).check()

    return CheckUpdateResponse(
        update_available=notification.available,
        current_version=notification.current_version,
        latest_version=notification.version
    )


@router.post("/apply-update", response_model=ApplyUpdateResponse, status_code=202)
def apply_update():
    """Launch the update manager to apply the latest update."""
    installation = _installation()

    if UpdateLock(installation.application_folder).is_locked():
        raise HTTPException(
            status_code=409,
            detail="Another update is already in progress"
        )

    try:
        process = launch_apply(config.UPDATER_CONFIG)
    except OSError as e:
        logger.error(f"Failed to launch update manager: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to launch update manager: {e}")

    logger.info(f"Update manager launched (PID: {process.pid})")

    return ApplyUpdateResponse(
        message="Update started",
        pid=process.pid
    )


@router.get("/update-status", response_model=UpdateStatus)
def get_update_status():
    """Get the stage of the current or last update run."""
    return _read_status(_installation())


@router.get("/update-stream")
async def update_stream():
    """Stream update progress via Server-Sent Events."""
    installation = _installation()

    async def event_generator():
        """Generate SSE events.

        The stream completes when a run it saw holding the lock lets go of it,
        or when no run takes the lock within STREAM_IDLE_TIMEOUT seconds. A
        freshly launched run may need a moment before it takes the lock, so a
        terminal record from an earlier run does not end the stream by itself.
        """
        last_payload = None
        seen_running = False
        idle_deadline = time.monotonic() + config.STREAM_IDLE_TIMEOUT

        while True:
            status = _read_status(installation)
            payload = status.model_dump_json()

            if payload != last_payload:
                yield {
                    "event": "status",
                    "data": payload
                }
                last_payload = payload

            if status.running:
                seen_running = True
            elif seen_running or time.monotonic() >= idle_deadline:
                yield {
                    "event": "complete",
                    "data": payload
                }
                break

            await asyncio.sleep(config.STREAM_INTERVAL)

    return EventSourceResponse(event_generator())


@router.get("/backups", response_model=List[BackupInfo])
def list_backups():
    """List available backups."""
    installation = _installation()
    backup_manager = BackupManager(installation.backups_folder)

    return [BackupInfo(**backup) for backup in backup_manager.list_backups()]
