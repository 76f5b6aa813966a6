"""FastAPI routing layer for the control API."""
from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..commands import ResponseParseError
from ..models.api import Route, RouteChangeRequest
from ..pipeline import CommandTimeoutError, PipelineClosedError
from ..services.bridge import ControlBridge
from ..services.dependencies import get_bridge

router = APIRouter()

_COMMAND_ERRORS = (
    CommandTimeoutError,
    PipelineClosedError,
    ResponseParseError,
    asyncio.TimeoutError,
)


@router.get("/input", response_model=Route)
async def read_input(bridge: ControlBridge = Depends(get_bridge)) -> Route:
    try:
        return await bridge.read_route()
    except _COMMAND_ERRORS as exc:
        raise HTTPException(status_code=500, detail=str(exc) or "command failed") from exc


@router.put("/input", response_model=RouteChangeRequest)
async def update_input(
    request: Optional[RouteChangeRequest] = None,
    bridge: ControlBridge = Depends(get_bridge),
) -> RouteChangeRequest:
    if request is None or "sourceID" not in request.model_fields_set:
        raise HTTPException(status_code=400, detail="sourceID is required")
    if request.sourceID is not None and request.sourceID < 0:
        raise HTTPException(status_code=400, detail="sourceID must not be negative")
    try:
        await bridge.change_route(request.sourceID)
    except _COMMAND_ERRORS as exc:
        raise HTTPException(status_code=500, detail=str(exc) or "command failed") from exc
    return RouteChangeRequest(sourceID=request.sourceID)


__all__ = ["router"]
