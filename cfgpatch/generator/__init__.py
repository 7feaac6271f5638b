# cfgpatch config generator package
from .engine import generate, patch_document
from .generator import ConfigDocument, ConfigGenerator, GenerationResult
from .sections import SectionModel, parse_config_sections
from .sources import DocumentSourceError, GitHubConfigSource, load_file
from .templates import TemplateRenderer

__all__ = [
    "ConfigDocument",
    "ConfigGenerator",
    "DocumentSourceError",
    "GenerationResult",
    "GitHubConfigSource",
    "SectionModel",
    "TemplateRenderer",
    "generate",
    "load_file",
    "parse_config_sections",
    "patch_document",
]
