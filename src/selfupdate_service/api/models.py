"""Pydantic models for API."""
from typing import Optional

from pydantic import BaseModel

from selfupdate_engine.state import UpdateStage


class CheckUpdateResponse(BaseModel):
    """Update availability."""
    update_available: bool
    current_version: Optional[str] = None
    latest_version: Optional[str] = None


class ApplyUpdateResponse(BaseModel):
    """Update start response."""
    message: str
    pid: int


class UpdateStatus(BaseModel):
    """Stage of the current or last update run."""
    stage: UpdateStage
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    last_updated: Optional[str] = None
    current_version: Optional[str] = None
    target_version: Optional[str] = None
    package: Optional[str] = None
    backup: Optional[str] = None
    error: Optional[str] = None
    running: bool = False


class BackupInfo(BaseModel):
    """Backup information."""
    name: str
    path: str
    version: str
    created_at: Optional[str]
    size: int
