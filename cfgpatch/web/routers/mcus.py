"""
API endpoints for secondary MCUs (toolhead, expansion and host boards).
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ...generator.secondary_mcu import (
    FUNCTION_CATEGORIES,
    FUNCTION_OPTIONS,
    SECONDARY_MCU_PRESETS,
    SecondaryMcu,
)
from ...generator.sources import DocumentSourceError, GitHubConfigSource, check_config_name
from ...wizard.state import WizardState
from ..session import get_source, load_state

router = APIRouter()


class UploadMcuRequest(BaseModel):
    file_name: str
    text: str


class UpdateMcuRequest(BaseModel):
    """Fields left out are not changed."""
    name: Optional[str] = None
    connection_type: Optional[str] = None
    serial: Optional[str] = None
    canbus_uuid: Optional[str] = None
    enabled: Optional[bool] = None


class FunctionRequest(BaseModel):
    category: str
    option: str
    enabled: bool


def _load(state: WizardState) -> List[SecondaryMcu]:
    return [SecondaryMcu.from_dict(m) for m in state.get_secondary_mcus()]


def _save(state: WizardState, mcus: List[SecondaryMcu]) -> List[Dict[str, Any]]:
    state.set_secondary_mcus([m.to_dict() for m in mcus])
    state.save()
    return [_public(m) for m in mcus]


def _public(mcu: SecondaryMcu) -> Dict[str, Any]:
    """MCU as returned to clients; the board config text itself is left out."""
    data = mcu.to_dict()
    data["has_config"] = bool(data.pop("config_data"))
    return data


def _get(mcus: List[SecondaryMcu], index: int) -> SecondaryMcu:
    if not 0 <= index < len(mcus):
        raise HTTPException(status_code=404, detail=f"No secondary MCU at index {index}")
    return mcus[index]


@router.get("/mcus/presets")
async def list_presets() -> Dict[str, Any]:
    return {
        "presets": SECONDARY_MCU_PRESETS,
        "categories": FUNCTION_CATEGORIES,
        "options": FUNCTION_OPTIONS,
    }


@router.get("/mcus")
async def list_mcus(state_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    return [_public(m) for m in _load(load_state(state_dir))]


@router.post("/mcus/preset/{preset_key}")
async def add_preset(preset_key: str, state_dir: Optional[str] = None,
                     source: GitHubConfigSource = Depends(get_source)) -> List[Dict[str, Any]]:
    """Add a preset MCU; its board sample config is fetched when available."""
    if preset_key not in SECONDARY_MCU_PRESETS:
        raise HTTPException(status_code=404, detail=f"Unknown MCU preset: {preset_key}")
    config_data = source.fetch_optional(SECONDARY_MCU_PRESETS[preset_key].get("config_file"))

    state = load_state(state_dir)
    mcus = _load(state)
    mcus.append(SecondaryMcu.from_preset(preset_key, config_data=config_data))
    return _save(state, mcus)


@router.post("/mcus/upload")
async def add_upload(request: UploadMcuRequest, state_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    """Add a custom MCU from its own board config."""
    try:
        check_config_name(request.file_name)
    except DocumentSourceError as e:
        raise HTTPException(status_code=400, detail=str(e))

    state = load_state(state_dir)
    mcus = _load(state)
    mcus.append(SecondaryMcu.from_upload(request.file_name, request.text))
    return _save(state, mcus)


@router.put("/mcus/{index}")
async def update_mcu(index: int, request: UpdateMcuRequest,
                     state_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    state = load_state(state_dir)
    mcus = _load(state)
    mcu = _get(mcus, index)

    if request.connection_type is not None:
        mcu.set_connection_type(request.connection_type)
    if request.name is not None:
        mcus[index] = mcu = SecondaryMcu.from_dict(dict(mcu.to_dict(), name=request.name))
    if request.serial is not None:
        mcu.serial = request.serial
    if request.canbus_uuid is not None:
        mcu.canbus_uuid = request.canbus_uuid
    if request.enabled is not None:
        mcu.enabled = request.enabled
    return _save(state, mcus)


@router.put("/mcus/{index}/functions")
async def set_function(index: int, request: FunctionRequest,
                       state_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    if request.option not in FUNCTION_OPTIONS.get(request.category, []):
        raise HTTPException(status_code=400,
                            detail=f"Unknown function: {request.category}/{request.option}")
    state = load_state(state_dir)
    mcus = _load(state)
    _get(mcus, index).set_function(request.category, request.option, request.enabled)
    return _save(state, mcus)


@router.delete("/mcus/{index}")
async def remove_mcu(index: int, state_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    state = load_state(state_dir)
    mcus = _load(state)
    _get(mcus, index)
    del mcus[index]
    return _save(state, mcus)
