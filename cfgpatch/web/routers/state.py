"""
API endpoints for session state management.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ...wizard.state import WizardState
from ..session import resolve_state_dir

router = APIRouter()

STATE_FILENAME = WizardState.STATE_FILENAME
BACKUP_PREFIX = ".cfgpatch_state.backup."


def _timestamp() -> str:
    return datetime.now().strftime('%Y%m%d_%H%M%S')


class StateResponse(BaseModel):
    """Response containing session state."""
    state: Dict[str, Any]
    metadata: Dict[str, Any] = {}


class SaveStateRequest(BaseModel):
    """Request to save session state."""
    state: Dict[str, Any]
    state_dir: Optional[str] = None  # Override default location


class SaveStateResponse(BaseModel):
    """Response from saving state."""
    success: bool
    path: str
    message: str = ""


class BackupInfo(BaseModel):
    """Information about a state backup."""
    filename: str
    created: str
    size: int


class BackupListResponse(BaseModel):
    """Response listing available backups."""
    backups: List[BackupInfo]


def flatten_state(nested: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Flatten nested state dict to dot-notation keys.
    {"printer": {"bed_x": 300}} -> {"printer.bed_x": 300}
    """
    result = {}
    for key, value in nested.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_state(value, full_key))
        else:
            result[full_key] = value
    return result


@router.get("/state")
async def get_state(state_dir: Optional[str] = None) -> StateResponse:
    """
    Load saved session state from disk.

    Args:
        state_dir: Optional path to look for state file
    """
    search_dir = resolve_state_dir(state_dir)
    state_file = search_dir / STATE_FILENAME

    if not state_file.exists():
        return StateResponse(
            state={},
            metadata={
                "version": WizardState.VERSION,
                "created": datetime.now().isoformat(),
                "source": "new",
            }
        )

    try:
        with open(state_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=500, detail=f"Invalid state file: {e}")
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Error loading state: {e}")

    if not isinstance(data, dict):
        raise HTTPException(status_code=500, detail="Invalid state file: not an object")

    config = data.get("config", {})
    meta = data.get("wizard", {})

    return StateResponse(
        state=flatten_state(config),
        metadata={
            "version": meta.get("version", WizardState.VERSION),
            "created": meta.get("created"),
            "last_modified": meta.get("last_modified"),
            "source": "file",
            "path": str(state_file),
        }
    )


@router.post("/state")
async def save_state(request: SaveStateRequest) -> SaveStateResponse:
    """
    Save session state to disk.

    Creates a backup of the existing state before overwriting.
    """
    save_dir = resolve_state_dir(request.state_dir)
    state_file = save_dir / STATE_FILENAME

    try:
        save_dir.mkdir(parents=True, exist_ok=True)

        if state_file.exists():
            state_file.rename(save_dir / f"{BACKUP_PREFIX}{_timestamp()}.json")

        state = WizardState(state_dir=save_dir)
        for key, value in request.state.items():
            if value is None:
                continue
            state.set(key, value)
        state.save()
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Error saving state: {e}")

    return SaveStateResponse(
        success=True,
        path=str(state_file),
        message="State saved successfully",
    )


@router.get("/state/backups")
async def list_backups(state_dir: Optional[str] = None) -> BackupListResponse:
    """List available state backups."""
    search_dir = resolve_state_dir(state_dir)

    if not search_dir.exists():
        return BackupListResponse(backups=[])

    backups = []
    for f in search_dir.glob(f"{BACKUP_PREFIX}*.json"):
        stat = f.stat()
        backups.append(BackupInfo(
            filename=f.name,
            created=datetime.fromtimestamp(stat.st_mtime).isoformat(),
            size=stat.st_size,
        ))

    # Newest first
    backups.sort(key=lambda x: (x.created, x.filename), reverse=True)

    return BackupListResponse(backups=backups)


@router.post("/state/restore/{backup_name}")
async def restore_backup(backup_name: str, state_dir: Optional[str] = None) -> SaveStateResponse:
    """Restore state from a backup file."""
    search_dir = resolve_state_dir(state_dir)
    backup_file = search_dir / backup_name
    state_file = search_dir / STATE_FILENAME

    if "/" in backup_name or not backup_name.startswith(BACKUP_PREFIX) or not backup_file.exists():
        raise HTTPException(status_code=404, detail=f"Backup not found: {backup_name}")

    try:
        with open(backup_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=500, detail=f"Invalid backup file: {e}")
    if not isinstance(data, dict):
        raise HTTPException(status_code=500, detail="Invalid backup file: not an object")

    try:
        # Keep the current state around before replacing it
        if state_file.exists():
            state_file.rename(search_dir / f".cfgpatch_state.pre_restore.{_timestamp()}.json")

        if isinstance(data.get("wizard"), dict):
            data["wizard"]["last_modified"] = datetime.now().isoformat()

        with open(state_file, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Error restoring backup: {e}")

    return SaveStateResponse(
        success=True,
        path=str(state_file),
        message=f"Restored from {backup_name}",
    )


@router.delete("/state")
async def clear_state(state_dir: Optional[str] = None) -> SaveStateResponse:
    """Clear session state (creates backup first)."""
    search_dir = resolve_state_dir(state_dir)
    state_file = search_dir / STATE_FILENAME

    if not state_file.exists():
        return SaveStateResponse(
            success=True,
            path=str(state_file),
            message="No state to clear",
        )

    backup_name = f".cfgpatch_state.cleared.{_timestamp()}.json"
    backup_file = search_dir / backup_name
    try:
        state_file.rename(backup_file)
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Error clearing state: {e}")

    return SaveStateResponse(
        success=True,
        path=str(backup_file),
        message=f"State cleared. Backup saved as {backup_name}",
    )
