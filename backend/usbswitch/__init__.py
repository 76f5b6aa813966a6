"""Controller for a serial USB switch with an HTTP routing API."""

from .config import Settings, load_settings  # noqa: F401
from .lifecycle import StateKind, run_controller  # noqa: F401
from .pipeline import CommandPipeline  # noqa: F401

__all__ = ["CommandPipeline", "Settings", "StateKind", "load_settings", "run_controller"]
