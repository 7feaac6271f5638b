"""
includes.py - [include ...] line extraction and the editable include list
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional

from .sections import INCLUDE_RE, split_lines

# Common include files offered by the settings UI
INCLUDE_PRESETS = [
    {"name": "mainsail.cfg", "description": "Mainsail web interface macros"},
    {"name": "fluidd.cfg", "description": "Fluidd web interface macros"},
    {"name": "macros.cfg", "description": "Custom macro definitions"},
    {"name": "timelapse.cfg", "description": "Timelapse plugin configuration"},
    {"name": "KAMP_Settings.cfg", "description": "Klipper Adaptive Meshing & Purging"},
    {"name": "klipperscreen.cfg", "description": "KlipperScreen display settings"},
    {"name": "crowsnest.conf", "description": "Webcam streaming configuration"},
    {"name": "adxl.cfg", "description": "ADXL345 accelerometer configuration"},
    {"name": "ebb36.cfg", "description": "EBB36 CAN toolhead board"},
    {"name": "ebb42.cfg", "description": "EBB42 CAN toolhead board"},
    {"name": "sht36.cfg", "description": "Mellow SHT36 toolhead board"},
    {"name": "stealthburner_leds.cfg", "description": "Voron Stealthburner LED macros"},
]


@dataclass
class IncludeFile:
    file_name: str
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def extract_includes(config_text: str) -> List[IncludeFile]:
    """Every [include x] line, commented ones as disabled, in document order."""
    includes = []
    for line in split_lines(config_text):
        match = INCLUDE_RE.match(line)
        if match:
            includes.append(IncludeFile(file_name=match.group(2).strip(), enabled=not match.group(1)))
    return includes


class IncludeList:
    """Ordered include entries; file names are unique ignoring case."""

    def __init__(self, includes: Optional[Iterable[IncludeFile]] = None):
        self._items: List[IncludeFile] = []
        for inc in includes or []:
            self.add(inc.file_name, inc.enabled)

    @classmethod
    def from_text(cls, config_text: str) -> "IncludeList":
        return cls(extract_includes(config_text))

    @classmethod
    def from_dicts(cls, data: Iterable[Dict[str, Any]]) -> "IncludeList":
        return cls(
            IncludeFile(file_name=str(d.get("file_name", "")), enabled=bool(d.get("enabled", True)))
            for d in data
        )

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[IncludeFile]:
        return iter(self._items)

    def __getitem__(self, index: int) -> IncludeFile:
        return self._items[index]

    def contains(self, file_name: str) -> bool:
        name = file_name.strip().lower()
        return any(inc.file_name.lower() == name for inc in self._items)

    def add(self, file_name: str, enabled: bool = True) -> bool:
        """Append an entry; blank or duplicate names are rejected (returns False)."""
        file_name = (file_name or "").strip()
        if not file_name or self.contains(file_name):
            return False
        self._items.append(IncludeFile(file_name=file_name, enabled=enabled))
        return True

    def remove(self, index: int) -> IncludeFile:
        return self._items.pop(index)

    def toggle(self, index: int) -> bool:
        item = self._items[index]
        item.enabled = not item.enabled
        return item.enabled

    def set_all(self, enabled: bool) -> None:
        for item in self._items:
            item.enabled = enabled

    @property
    def enabled_count(self) -> int:
        return sum(1 for inc in self._items if inc.enabled)

    def to_list(self) -> List[Dict[str, Any]]:
        return [inc.to_dict() for inc in self._items]
