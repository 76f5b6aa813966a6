"""Pydantic models shared across the control API."""

from .api import Route, RouteChangeRequest, Source

__all__ = ["Route", "RouteChangeRequest", "Source"]
