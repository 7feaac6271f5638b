"""
state.py - Persisted patch session state

Holds the settings form values, the section selection, the include list and
the secondary MCUs between runs, as JSON next to the printer config.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .settings import FORM_FALLBACKS

logger = logging.getLogger(__name__)

STATE_DIR_ENV = "CFGPATCH_STATE_DIR"


def get_default_state_dir() -> Path:
    """State directory: $CFGPATCH_STATE_DIR, else ~/printer_data/config."""
    env_dir = os.environ.get(STATE_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / "printer_data" / "config"


class WizardState:
    """Manages the patch session state."""

    STATE_FILENAME = ".cfgpatch_state.json"
    VERSION = "1.0"

    def __init__(self, state_dir: Path = None):
        self.state_dir = Path(state_dir) if state_dir else get_default_state_dir()
        self.state_file = self.state_dir / self.STATE_FILENAME
        self._state: Dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load state from disk if exists."""
        if self.state_file.exists():
            try:
                with open(self.state_file, 'r') as f:
                    self._state = json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning("Ignoring unreadable state file %s: %s", self.state_file, e)
                self._state = {}
        else:
            self._state = {}

        if not isinstance(self._state, dict):
            self._state = {}

        # Ensure basic structure
        if "wizard" not in self._state:
            self._state["wizard"] = {
                "version": self.VERSION,
                "created": datetime.now().isoformat(),
                "last_modified": datetime.now().isoformat(),
            }
        if not isinstance(self._state.get("config"), dict):
            self._state["config"] = {}

    def save(self) -> None:
        """Save state to disk."""
        self._state["wizard"]["last_modified"] = datetime.now().isoformat()
        self.state_dir.mkdir(parents=True, exist_ok=True)

        with open(self.state_file, 'w') as f:
            json.dump(self._state, f, indent=2)
        logger.debug("Saved state to %s", self.state_file)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Example: state.get("printer.bed_x")
        """
        value = self._state.get("config", {})
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value using dot notation.

        Example: state.set("printer.bed_x", 300)
        """
        keys = key.split(".")
        config = self._state.setdefault("config", {})

        for k in keys[:-1]:
            # A non-dict intermediate value is replaced so the nested set works
            existing = config.get(k)
            if existing is not None and not isinstance(existing, dict):
                config[k] = {}
            config = config.setdefault(k, {})

        config[keys[-1]] = value

    def delete(self, key: str) -> bool:
        """Delete a configuration value. Returns True if existed."""
        keys = key.split(".")
        config = self._state.get("config", {})

        for k in keys[:-1]:
            if not isinstance(config, dict) or k not in config:
                return False
            config = config[k]

        if isinstance(config, dict) and keys[-1] in config:
            del config[keys[-1]]
            return True
        return False

    def clear(self) -> None:
        """Clear all configuration (keeps wizard metadata)."""
        self._state["config"] = {}
        self._state["wizard"]["last_modified"] = datetime.now().isoformat()

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration data."""
        return self._state.get("config", {})

    def get_metadata(self) -> Dict[str, Any]:
        return dict(self._state.get("wizard", {}))

    # Settings form

    def form_values(self) -> Dict[str, Any]:
        """Flat dot-notation values of the settings form fields that are set."""
        values = {}
        for key in FORM_FALLBACKS:
            value = self.get(key)
            if value is not None:
                values[key] = value
        return values

    def update_form(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            if key in FORM_FALLBACKS:
                self.set(key, value)

    # Document session

    def get_selection(self) -> Optional[List[int]]:
        """Selected section indices, or None when the user never chose."""
        selection = self.get("session.selection")
        if not isinstance(selection, list):
            return None
        return [int(i) for i in selection]

    def set_selection(self, indices: List[int]) -> None:
        self.set("session.selection", sorted(set(int(i) for i in indices)))

    def get_includes(self) -> Optional[List[Dict[str, Any]]]:
        includes = self.get("session.includes")
        return includes if isinstance(includes, list) else None

    def set_includes(self, includes: List[Dict[str, Any]]) -> None:
        self.set("session.includes", includes)

    def get_secondary_mcus(self) -> List[Dict[str, Any]]:
        mcus = self.get("session.secondary_mcus")
        return [m for m in mcus if isinstance(m, dict)] if isinstance(mcus, list) else []

    def set_secondary_mcus(self, mcus: List[Dict[str, Any]]) -> None:
        self.set("session.secondary_mcus", mcus)

    def start_document(self, file_name: str) -> None:
        """A new document was loaded: forget everything tied to the previous one."""
        for key in ("session.selection", "session.includes"):
            self.delete(key)
        self.set("session.file_name", file_name)

    def export_for_generator(self) -> Dict[str, Any]:
        """Export state in format suitable for the config generator."""
        return {
            "version": self._state["wizard"]["version"],
            "generated": datetime.now().isoformat(),
            "form": self.form_values(),
            "selection": self.get_selection(),
            "includes": self.get_includes(),
            "secondary_mcus": self.get_secondary_mcus(),
            "file_name": self.get("session.file_name"),
        }

    def __repr__(self) -> str:
        return f"WizardState({self.state_file})"

