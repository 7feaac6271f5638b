"""
API endpoints for loading a document, choosing sections and settings, and
downloading the patched config.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from ...generator.generator import ConfigDocument
from ...generator.includes import INCLUDE_PRESETS
from ...generator.sections import CATEGORY_ORDER, categorize_section
from ...generator.sources import (
    DocumentSourceError,
    GitHubConfigSource,
    check_config_name,
    filter_boards,
)
from ...wizard.settings import KINEMATICS, build_settings
from ..session import find_document, get_document, get_generator, get_source, load_state, set_document

router = APIRouter()


class BoardInfo(BaseModel):
    file_name: str
    display_name: str


class UploadRequest(BaseModel):
    """A document supplied by the client."""
    file_name: str
    text: str


class SectionInfo(BaseModel):
    index: int
    name: str
    category: str
    enabled: bool
    originally_disabled: bool
    selected: bool
    start_line: int
    end_line: int


class DocumentResponse(BaseModel):
    file_name: str
    sections: List[SectionInfo]
    categories: List[str]
    has_save_config: bool
    saved_values: int
    defaults: Dict[str, Any]
    settings: Dict[str, Any]
    drivers: Dict[str, Any]
    includes: List[Dict[str, Any]]


class SelectionRequest(BaseModel):
    indices: List[int]


class SettingsRequest(BaseModel):
    """Flat dot-notation form values, e.g. {"printer.bed_x": 300}."""
    values: Dict[str, Any]


class IncludeRequest(BaseModel):
    file_name: str
    enabled: bool = True


class ToggleAllRequest(BaseModel):
    enabled: bool


def describe(document: ConfigDocument, state) -> DocumentResponse:
    gen = get_generator(state)
    settings = gen.get_settings()
    selection = set(gen.get_selection())
    report = gen.driver_report(settings)

    sections = [
        SectionInfo(
            index=i,
            name=s.name,
            category=categorize_section(s.name),
            enabled=s.enabled,
            originally_disabled=s.originally_disabled,
            selected=i in selection,
            start_line=s.start_line,
            end_line=s.end_line,
        )
        for i, s in enumerate(document.model)
    ]
    present = {s.category for s in sections}

    return DocumentResponse(
        file_name=document.file_name,
        sections=sections,
        categories=[c for c in CATEGORY_ORDER if c in present],
        has_save_config=document.model.has_save_config,
        saved_values=len(document.saved_values),
        defaults=document.defaults.to_dict(),
        settings=settings.to_dict(),
        drivers={
            "available": report.available,
            "required": report.required,
            "remaining": report.remaining,
            "insufficient": report.insufficient,
            "message": report.message(),
        },
        includes=gen.get_includes().to_list(),
    )


# Document sources

@router.get("/boards")
async def list_boards(query: str = "", source: GitHubConfigSource = Depends(get_source)) -> List[BoardInfo]:
    """Board sample configs, optionally filtered by name."""
    try:
        boards = source.list_boards()
    except DocumentSourceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return [BoardInfo(file_name=b.file_name, display_name=b.display_name)
            for b in filter_boards(boards, query)]


@router.post("/documents/board/{file_name}")
async def load_board(file_name: str, state_dir: Optional[str] = None,
                     source: GitHubConfigSource = Depends(get_source)) -> DocumentResponse:
    """Fetch a board sample config and make it the current document."""
    try:
        text = source.fetch(file_name)
    except DocumentSourceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    state = load_state(state_dir)
    return describe(set_document(state, text, file_name), state)


@router.post("/documents/upload")
async def upload_document(request: UploadRequest, state_dir: Optional[str] = None) -> DocumentResponse:
    """Make an uploaded config the current document."""
    try:
        check_config_name(request.file_name)
    except DocumentSourceError as e:
        raise HTTPException(status_code=400, detail=str(e))
    state = load_state(state_dir)
    return describe(set_document(state, request.text, request.file_name), state)


@router.get("/documents/current")
async def current_document(state_dir: Optional[str] = None) -> DocumentResponse:
    state = load_state(state_dir)
    return describe(get_document(state), state)


# Selection and settings

@router.put("/documents/selection")
async def set_selection(request: SelectionRequest, state_dir: Optional[str] = None) -> DocumentResponse:
    state = load_state(state_dir)
    document = get_document(state)
    count = len(document.model)
    bad = [i for i in request.indices if not 0 <= i < count]
    if bad:
        raise HTTPException(status_code=400, detail=f"Section index out of range: {bad}")
    state.set_selection(request.indices)
    state.save()
    return describe(document, state)


@router.delete("/documents/selection")
async def reset_selection(state_dir: Optional[str] = None) -> DocumentResponse:
    """Back to the sections enabled in the document."""
    state = load_state(state_dir)
    document = get_document(state)
    state.delete("session.selection")
    state.save()
    return describe(document, state)


@router.get("/kinematics")
async def list_kinematics() -> Dict[str, Dict[str, Any]]:
    return KINEMATICS


@router.put("/settings")
async def update_settings(request: SettingsRequest, state_dir: Optional[str] = None) -> Dict[str, Any]:
    """Store settings form values; returns the resulting snapshot."""
    state = load_state(state_dir)
    state.update_form(request.values)
    state.save()
    document = find_document(state)
    if document is None:
        return build_settings(state.form_values()).to_dict()
    return get_generator(state).get_settings().to_dict()


# Includes

def _save_includes(state, includes) -> List[Dict[str, Any]]:
    state.set_includes(includes.to_list())
    state.save()
    return includes.to_list()


@router.get("/includes/presets")
async def include_presets() -> List[Dict[str, str]]:
    return INCLUDE_PRESETS


@router.get("/includes")
async def list_includes(state_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    return get_generator(load_state(state_dir)).get_includes().to_list()


@router.post("/includes")
async def add_include(request: IncludeRequest, state_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    state = load_state(state_dir)
    includes = get_generator(state).get_includes()
    if not includes.add(request.file_name, request.enabled):
        raise HTTPException(status_code=409, detail=f"Include already present or blank: '{request.file_name}'")
    return _save_includes(state, includes)


@router.delete("/includes/{index}")
async def remove_include(index: int, state_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    state = load_state(state_dir)
    includes = get_generator(state).get_includes()
    if not 0 <= index < len(includes):
        raise HTTPException(status_code=404, detail=f"No include at index {index}")
    includes.remove(index)
    return _save_includes(state, includes)


@router.post("/includes/{index}/toggle")
async def toggle_include(index: int, state_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    state = load_state(state_dir)
    includes = get_generator(state).get_includes()
    if not 0 <= index < len(includes):
        raise HTTPException(status_code=404, detail=f"No include at index {index}")
    includes.toggle(index)
    return _save_includes(state, includes)


@router.put("/includes")
async def toggle_all_includes(request: ToggleAllRequest, state_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    state = load_state(state_dir)
    includes = get_generator(state).get_includes()
    includes.set_all(request.enabled)
    return _save_includes(state, includes)


# Output

def _generate(state_dir: Optional[str]):
    gen = get_generator(load_state(state_dir))
    try:
        return gen.generate()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/documents/generate")
async def generate_config(state_dir: Optional[str] = None) -> Dict[str, Any]:
    return _generate(state_dir).to_dict()


@router.get("/documents/download")
async def download_config(state_dir: Optional[str] = None) -> PlainTextResponse:
    result = _generate(state_dir)
    return PlainTextResponse(
        result.text,
        headers={"Content-Disposition": f"attachment; filename={result.file_name}"},
    )
