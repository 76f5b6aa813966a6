"""Dependency helpers for wiring the control bridge into FastAPI."""
from __future__ import annotations

from fastapi import HTTPException, Request

from .bridge import ControlBridge


def get_bridge(request: Request) -> ControlBridge:
    bridge = getattr(request.app.state, "bridge", None)
    if bridge is None:
        raise HTTPException(status_code=503, detail="USB switch is not connected")
    return bridge


__all__ = ["get_bridge"]
