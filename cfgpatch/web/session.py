"""
Shared helpers for the routers: state loading, the loaded document, and the
board config source.
"""

from pathlib import Path
from typing import Dict, Optional

from fastapi import HTTPException

from ..generator.generator import ConfigDocument, ConfigGenerator
from ..generator.sources import GitHubConfigSource
from ..wizard.state import WizardState, get_default_state_dir

# Loaded documents, one per state directory
_documents: Dict[str, ConfigDocument] = {}


def resolve_state_dir(state_dir: Optional[str] = None) -> Path:
    return Path(state_dir).expanduser() if state_dir else get_default_state_dir()


def load_state(state_dir: Optional[str] = None) -> WizardState:
    return WizardState(state_dir=resolve_state_dir(state_dir))


def get_source() -> GitHubConfigSource:
    """Board config source; tests override this dependency."""
    return GitHubConfigSource()


def set_document(state: WizardState, text: str, file_name: str) -> ConfigDocument:
    """Parse a freshly supplied document and reset the per-document session."""
    document = ConfigDocument.from_text(text, file_name=file_name)
    _documents[str(state.state_dir)] = document
    state.start_document(file_name)
    state.save()
    return document


def find_document(state: WizardState) -> Optional[ConfigDocument]:
    return _documents.get(str(state.state_dir))


def get_document(state: WizardState) -> ConfigDocument:
    document = find_document(state)
    if document is None:
        raise HTTPException(status_code=404, detail="No document loaded")
    return document


def get_generator(state: WizardState) -> ConfigGenerator:
    return ConfigGenerator(get_document(state), state=state, output_dir=state.state_dir)


def clear_documents() -> None:
    _documents.clear()
