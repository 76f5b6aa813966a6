"""Single-outstanding-request command pipeline over a ``SerialLink``.

Commands are queued in issuance order and written one at a time; the next
command is only dispatched once the current one received its reply burst or
timed out. Replies carry no correlation id, so a burst always belongs to the
command in flight, and a burst arriving with nothing in flight is discarded.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Optional, TypeVar

from .commands import Command, ResponseParseError

logger = logging.getLogger(__name__)

R = TypeVar("R")

DEFAULT_COMMAND_TIMEOUT = 0.1  # seconds


class CommandTimeoutError(RuntimeError):
    """Raised when the switch does not answer a command in time."""


class PipelineClosedError(RuntimeError):
    """Raised for commands issued to, or pending on, a closed pipeline."""


@dataclass
class _Task:
    command: Command[Any]
    future: "asyncio.Future[Any]"
    timer: Optional[asyncio.TimerHandle] = None


class CommandPipeline:
    """Serializes commands onto the link and correlates reply bursts."""

    def __init__(self, link: Any, *, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> None:
        self._link = link
        self._timeout = timeout
        self._queue: Deque[_Task] = deque()
        self._in_flight: Optional[_Task] = None
        self._closed = False
        link.on_data(self._on_burst)

    @property
    def link(self) -> Any:
        return self._link

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_flight(self) -> Optional[Command[Any]]:
        return self._in_flight.command if self._in_flight else None

    @property
    def pending(self) -> int:
        return len(self._queue)

    def submit(self, command: Command[R]) -> "asyncio.Future[R]":
        """Queue ``command`` and return a future resolved with its decoded reply.

        The command is enqueued synchronously, so the order of ``submit`` calls
        is the order of writes on the wire.
        """

        if self._closed:
            raise PipelineClosedError(f"cannot run {command.instruction!r}: pipeline closed")
        loop = asyncio.get_running_loop()
        task = _Task(command=command, future=loop.create_future())
        self._queue.append(task)
        self._drain()
        return task.future

    def close(self) -> None:
        """Fail every pending command and refuse new ones.

        The link itself is released by :meth:`aclose`, which runs the blocking
        close in a worker thread.
        """

        if self._closed:
            return
        self._closed = True
        tasks = list(self._queue)
        self._queue.clear()
        if self._in_flight is not None:
            tasks.insert(0, self._in_flight)
            self._in_flight = None
        for task in tasks:
            self._finish(task, error=PipelineClosedError(
                f"{task.command.instruction!r} aborted: pipeline closed"
            ))
        if tasks:
            logger.info("Rejected %d pending command(s) on close", len(tasks))

    async def aclose(self) -> None:
        """Close the pipeline and release the link."""

        self.close()
        await asyncio.to_thread(self._link.close)

    # ------------------------------------------------------------------
    def _drain(self) -> None:
        while self._in_flight is None and self._queue and not self._closed:
            task = self._queue.popleft()
            if task.future.done():
                # Cancelled by the caller while waiting in the queue.
                continue
            loop = asyncio.get_running_loop()
            self._in_flight = task
            task.timer = loop.call_later(self._timeout, self._on_timeout, task)
            logger.debug("Sending %s", task.command)
            self._link.write(task.command.encode())

    def _on_burst(self, data: bytes) -> None:
        task = self._in_flight
        if task is None:
            logger.warning("Discarding unsolicited reception: %r", data)
            return
        self._in_flight = None
        try:
            value = task.command.parse(data)
        except ResponseParseError as exc:
            self._finish(task, error=exc)
        else:
            self._finish(task, value=value)
        self._drain()

    def _on_timeout(self, task: _Task) -> None:
        if self._in_flight is not task:
            return
        self._in_flight = None
        logger.warning(
            'Command "%s" timed out after %.0f ms', task.command, self._timeout * 1000
        )
        self._finish(task, error=CommandTimeoutError(
            f"no reply to {task.command.instruction!r} within {self._timeout:.3f}s"
        ))
        self._drain()

    @staticmethod
    def _finish(task: _Task, *, value: Any = None, error: Optional[BaseException] = None) -> None:
        if task.timer is not None:
            task.timer.cancel()
            task.timer = None
        if task.future.done():
            return
        if error is not None:
            task.future.set_exception(error)
        else:
            task.future.set_result(value)


__all__ = [
    "CommandPipeline",
    "CommandTimeoutError",
    "DEFAULT_COMMAND_TIMEOUT",
    "PipelineClosedError",
]
