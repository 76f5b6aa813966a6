"""Pydantic schemas shared across API routes."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class Source(BaseModel):
    # Unique identifier of the source, i.e. the switch port number.
    id: int
    # Human readable description, e.g. "MacBook Pro".
    description: str


class Route(BaseModel):
    # Currently routed source, or ``None`` when nothing is connected.
    sourceID: Optional[int]
    sources: List[Source] = []


class RouteChangeRequest(BaseModel):
    # Source to route, or ``None`` to disable routing.
    sourceID: Optional[int] = None


__all__ = ["Route", "RouteChangeRequest", "Source"]
