"""Translate control API requests into switch commands."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .. import commands
from ..models.api import Route
from ..pipeline import CommandPipeline

logger = logging.getLogger(__name__)


class ControlBridge:
    """Async facade bound to the pipeline of the live connection."""

    def __init__(self, pipeline: CommandPipeline, *, timeout: float = 10.0) -> None:
        self._pipeline = pipeline
        self._timeout = timeout
        self._last_source_id: Optional[int] = None

    @property
    def pipeline(self) -> CommandPipeline:
        return self._pipeline

    @property
    def last_source_id(self) -> Optional[int]:
        return self._last_source_id

    async def read_route(self) -> Route:
        number = await asyncio.wait_for(self._pipeline.submit(commands.port()), self._timeout)
        self._last_source_id = commands.source_for_port(number)
        return Route(sourceID=self._last_source_id, sources=[])

    async def change_route(self, source_id: Optional[int]) -> None:
        """Route ``source_id`` now and make it the power-on default.

        The default port is only written once the switch accepted the port
        change.
        """

        number = commands.port_for_source(source_id)
        await asyncio.wait_for(self._apply(number), self._timeout)
        self._last_source_id = commands.source_for_port(number)
        logger.info("Routed source %s", self._last_source_id)

    async def _apply(self, number: int) -> None:
        await self._pipeline.submit(commands.set_port(number))
        await self._pipeline.submit(commands.set_default_port(number))


__all__ = ["ControlBridge"]
