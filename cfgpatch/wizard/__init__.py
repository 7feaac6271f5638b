# cfgpatch session state and settings
from .settings import Settings, build_settings
from .state import WizardState

__all__ = ["Settings", "WizardState", "build_settings"]
