"""Service layer for the control API."""

from .bridge import ControlBridge
from .dependencies import get_bridge

__all__ = ["ControlBridge", "get_bridge"]
