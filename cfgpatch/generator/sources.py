"""
sources.py - Document sources

Supplies complete config documents: board sample configs from a GitHub
folder, or local files. Failures raise DocumentSourceError and are never
retried here.
"""

import json
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

CONFIG_EXTENSION = ".cfg"
REQUEST_TIMEOUT = 30

DEFAULT_REPO_OWNER = "Kanrog"
DEFAULT_REPO_NAME = "klipper-config-generator"
DEFAULT_CONFIG_FOLDER = "config-examples"
DEFAULT_REPO_BRANCH = "main"


class DocumentSourceError(Exception):
    """A document could not be supplied (network, HTTP status, encoding, extension)."""


@dataclass(frozen=True)
class BoardEntry:
    file_name: str
    display_name: str


def board_display_name(file_name: str) -> str:
    """'generic-bigtreetech-octopus.cfg' -> 'BIGTREETECH OCTOPUS'."""
    name = file_name.replace("generic-", "", 1).replace(CONFIG_EXTENSION, "", 1)
    return name.replace("-", " ").upper()


def filter_boards(boards: List[BoardEntry], query: str) -> List[BoardEntry]:
    """Case-insensitive match on file name or display name."""
    query = (query or "").strip().lower()
    if not query:
        return list(boards)
    return [
        b for b in boards
        if query in b.file_name.lower() or query in b.display_name.lower()
    ]


def check_config_name(file_name: str) -> None:
    if not file_name or not file_name.lower().endswith(CONFIG_EXTENSION):
        raise DocumentSourceError(f"Please supply a {CONFIG_EXTENSION} file (got '{file_name}')")


def decode_document(data: bytes, name: str) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DocumentSourceError(f"{name} is not valid UTF-8: {e}")


def load_file(path: Path) -> str:
    """Read a local .cfg document."""
    path = Path(path).expanduser()
    check_config_name(path.name)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise DocumentSourceError(f"Failed to read {path}: {e}")
    return decode_document(data, path.name)


class GitHubConfigSource:
    """Board sample configs stored in a GitHub repository folder."""

    def __init__(self, owner: str = None, repo: str = None, folder: str = None,
                 branch: str = None, timeout: float = REQUEST_TIMEOUT):
        self.owner = owner or os.environ.get("CFGPATCH_REPO_OWNER", DEFAULT_REPO_OWNER)
        self.repo = repo or os.environ.get("CFGPATCH_REPO_NAME", DEFAULT_REPO_NAME)
        self.folder = (folder or os.environ.get("CFGPATCH_CONFIG_FOLDER", DEFAULT_CONFIG_FOLDER)).strip("/")
        self.branch = branch or os.environ.get("CFGPATCH_REPO_BRANCH", DEFAULT_REPO_BRANCH)
        self.timeout = timeout

    @property
    def listing_url(self) -> str:
        return f"https://api.github.com/repos/{self.owner}/{self.repo}/contents/{self.folder}"

    def file_url(self, file_name: str) -> str:
        quoted = urllib.parse.quote(file_name)
        return f"https://raw.githubusercontent.com/{self.owner}/{self.repo}/{self.branch}/{self.folder}/{quoted}"

    def _get(self, url: str) -> bytes:
        request = urllib.request.Request(url, headers={"User-Agent": "cfgpatch"})
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                return response.read()
        except urllib.error.HTTPError as e:
            raise DocumentSourceError(f"Failed to fetch {url}: HTTP {e.code}")
        except urllib.error.URLError as e:
            raise DocumentSourceError(f"Failed to fetch {url}: {e.reason}")
        except OSError as e:
            raise DocumentSourceError(f"Failed to fetch {url}: {e}")

    def list_boards(self) -> List[BoardEntry]:
        """All .cfg files in the folder, with display names."""
        payload = decode_document(self._get(self.listing_url), "board listing")
        try:
            files = json.loads(payload)
        except json.JSONDecodeError as e:
            raise DocumentSourceError(f"Board listing is not valid JSON: {e}")
        if not isinstance(files, list):
            raise DocumentSourceError("Board listing has an unexpected format")

        boards = [
            BoardEntry(file_name=f["name"], display_name=board_display_name(f["name"]))
            for f in files
            if isinstance(f, dict) and str(f.get("name", "")).endswith(CONFIG_EXTENSION)
        ]
        logger.info("Listed %d boards from %s/%s", len(boards), self.repo, self.folder)
        return boards

    def fetch(self, file_name: str) -> str:
        """Complete text of one board config."""
        check_config_name(file_name)
        text = decode_document(self._get(self.file_url(file_name)), file_name)
        logger.info("Fetched %s (%d bytes)", file_name, len(text))
        return text

    def fetch_optional(self, file_name: Optional[str]) -> Optional[str]:
        """Like fetch, but a failure is logged and yields None (secondary MCU sample configs)."""
        if not file_name:
            return None
        try:
            return self.fetch(file_name)
        except DocumentSourceError as e:
            logger.warning("Could not load config file %s: %s", file_name, e)
            return None
