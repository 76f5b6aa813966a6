"""Device lifecycle of the USB switch controller.

    Idle --> AwaitingDevice --> Connecting --> Connected
                   ^                |              |
                   |                v              |
                   +------- Disconnected <---------+

Idle binds the control API (when configured), AwaitingDevice polls the serial
port enumeration until the configured device shows up, Connecting opens the
link and probes it with ``status``, and Connected exposes the live connection
through the control bridge. Any link error tears the connection down and the
cycle starts over from Disconnected.
"""
from __future__ import annotations

import asyncio
import enum
import errno
import logging
from typing import Any, Coroutine, Optional, Set

from . import commands
from .commands import ResponseParseError
from .config import Settings
from .fsm import State, StateMachine
from .pipeline import CommandPipeline, CommandTimeoutError, PipelineClosedError
from .serial_link import SerialLink, list_devices
from .server import ControlServer
from .services.bridge import ControlBridge

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_BIND_FAILURE = 1


class StateKind(str, enum.Enum):
    IDLE = "idle"
    DISCONNECTED = "disconnected"
    AWAITING_DEVICE = "awaiting_device"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Context:
    """Process-wide state shared by every lifecycle state."""

    def __init__(
        self,
        settings: Settings,
        machine: StateMachine,
        server: Optional[ControlServer] = None,
    ) -> None:
        self.settings = settings
        self.server = server
        self.connection: Optional[CommandPipeline] = None
        self._machine = machine
        self._tasks: Set[asyncio.Task[Any]] = set()
        self._exit: Optional[asyncio.Future[int]] = None

    @property
    def machine(self) -> StateMachine:
        return self._machine

    @property
    def state(self) -> Optional[StateKind]:
        current = self._machine.current
        return current.kind if current is not None else None

    def apply_state(self, kind: StateKind) -> bool:
        entered = self._machine.enter(kind, self)
        if not entered:
            logger.error("Did not enter state %s (current: %s)", kind.value, self.state)
        return entered

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> "asyncio.Task[Any]":
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed", exc_info=exc)

    def terminate(self, code: int) -> None:
        future = self._exit_future()
        if not future.done():
            future.set_result(code)

    @property
    def exit_code(self) -> Optional[int]:
        if self._exit is None or not self._exit.done():
            return None
        return self._exit.result()

    async def wait_exit(self) -> int:
        return await self._exit_future()

    def _exit_future(self) -> "asyncio.Future[int]":
        if self._exit is None:
            self._exit = asyncio.get_running_loop().create_future()
        return self._exit

    async def aclose(self) -> None:
        """Cancel background work and release the link and the listener."""

        if self.server is not None:
            await self.server.stop()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        connection, self.connection = self.connection, None
        if connection is not None:
            await connection.aclose()


class IdleState(State):
    kind = StateKind.IDLE
    valid_next = frozenset({StateKind.AWAITING_DEVICE})

    def did_enter(self, context: Context, previous: Optional[State]) -> None:
        logger.info("Did enter %s.", self.kind.value)
        port = context.settings.listen_port
        if port is not None and context.server is not None:
            try:
                context.server.bind(port)
            except OSError as exc:
                if exc.errno == errno.EADDRINUSE:
                    logger.critical("Port %s is already in use. Quitting...", port)
                else:
                    logger.critical("Unable to listen on port %s: %s. Quitting...", port, exc)
                context.terminate(EXIT_BIND_FAILURE)
                return
            context.server.start()
            logger.info("Listening at port %s.", port)
        context.apply_state(StateKind.AWAITING_DEVICE)


class DisconnectedState(State):
    kind = StateKind.DISCONNECTED
    valid_next = frozenset({StateKind.AWAITING_DEVICE})

    def did_enter(self, context: Context, previous: Optional[State]) -> None:
        logger.info("Did enter %s.", self.kind.value)
        context.apply_state(StateKind.AWAITING_DEVICE)


class AwaitingDeviceState(State):
    kind = StateKind.AWAITING_DEVICE
    valid_next = frozenset({StateKind.CONNECTING})

    def did_enter(self, context: Context, previous: Optional[State]) -> None:
        logger.info("Did enter %s.", self.kind.value)
        context.spawn(self._wait_for_device(context))

    async def _wait_for_device(self, context: Context) -> None:
        device = context.settings.device
        delay = context.settings.retry_delay
        while True:
            try:
                devices = await asyncio.to_thread(list_devices)
            except OSError as exc:
                logger.warning("Serial port enumeration failed: %s", exc)
                devices = []
            else:
                logger.info("Available devices: %s", devices)
            if device in devices:
                break
            logger.warning('Device "%s" is not available. Retrying in %ss...', device, delay)
            await asyncio.sleep(delay)
        context.apply_state(StateKind.CONNECTING)


class ConnectingState(State):
    kind = StateKind.CONNECTING
    valid_next = frozenset({StateKind.CONNECTED, StateKind.DISCONNECTED})

    def __init__(self) -> None:
        self._teardown: Optional["asyncio.Task[None]"] = None

    def did_enter(self, context: Context, previous: Optional[State]) -> None:
        logger.info("Did enter %s.", self.kind.value)
        settings = context.settings
        logger.info(
            "Trying to connect to %s (%s baud, parity %s, %s data bits)",
            settings.device,
            settings.baudrate,
            settings.parity,
            settings.data_bits,
        )
        link = SerialLink(
            settings.device,
            baudrate=settings.baudrate,
            parity=settings.parity,
            data_bits=settings.data_bits,
            silence_gap=settings.silence_gap,
        )
        pipeline = CommandPipeline(link, timeout=settings.command_timeout)
        link.on_error(lambda exc: self._on_link_error(context, pipeline, exc))
        context.connection = pipeline
        context.spawn(self._connect(context, link, pipeline))

    async def _connect(self, context: Context, link: SerialLink, pipeline: CommandPipeline) -> None:
        device = context.settings.device
        try:
            await link.open_async()
        except Exception as exc:  # any open failure takes the teardown path
            self._on_link_error(context, pipeline, exc)
            return

        logger.info("Running .status on %s...", device)
        try:
            status = await pipeline.submit(commands.status())
        except (CommandTimeoutError, PipelineClosedError, ResponseParseError) as exc:
            logger.warning("Unable to run .status on %s: %s", device, exc)
            self._disconnect_if_needed(context, pipeline)
            return

        logger.info(".status on %s:\n%s", device, status)
        context.apply_state(StateKind.CONNECTED)

    def _on_link_error(self, context: Context, pipeline: CommandPipeline, exc: BaseException) -> None:
        logger.error("An error occurred on %s: %s", context.settings.device, exc)
        self._disconnect_if_needed(context, pipeline)

    def _disconnect_if_needed(self, context: Context, pipeline: CommandPipeline) -> None:
        # Only the live connection may schedule a teardown, and only once.
        if context.connection is not pipeline or self._teardown is not None:
            return
        pipeline.close()
        delay = context.settings.teardown_delay
        logger.warning("Disconnecting in %ss...", delay)
        self._teardown = context.spawn(self._teardown_after(context, pipeline, delay))

    async def _teardown_after(self, context: Context, pipeline: CommandPipeline, delay: float) -> None:
        try:
            await pipeline.aclose()
            await asyncio.sleep(delay)
        finally:
            self._teardown = None
        if context.connection is pipeline:
            context.connection = None
        context.apply_state(StateKind.DISCONNECTED)


class ConnectedState(State):
    kind = StateKind.CONNECTED
    valid_next = frozenset({StateKind.DISCONNECTED})

    def did_enter(self, context: Context, previous: Optional[State]) -> None:
        logger.info("Did enter %s.", self.kind.value)
        if context.server is None:
            logger.info("No control port configured; %s is reachable. Exiting.", context.settings.device)
            context.terminate(EXIT_OK)
            return
        if context.connection is None:
            logger.error("Entered %s without a live connection", self.kind.value)
            return
        bridge = ControlBridge(context.connection, timeout=context.settings.timeout)
        context.server.install(bridge)
        logger.info("Control API bound to %s.", context.settings.device)

    def will_exit(self, context: Context, upcoming: State) -> None:
        if context.server is not None:
            context.server.uninstall()


def build_machine() -> StateMachine:
    return StateMachine(
        [
            IdleState(),
            DisconnectedState(),
            AwaitingDeviceState(),
            ConnectingState(),
            ConnectedState(),
        ]
    )


def build_context(settings: Settings) -> Context:
    server = None
    if settings.listen_port is not None:
        server = ControlServer(host=settings.listen_host)
    return Context(settings, build_machine(), server)


async def run_controller(settings: Settings) -> int:
    """Drive the lifecycle until it asks the process to exit; return the exit code."""

    context = build_context(settings)
    context.apply_state(StateKind.IDLE)
    try:
        return await context.wait_exit()
    finally:
        await context.aclose()


__all__ = [
    "AwaitingDeviceState",
    "ConnectedState",
    "ConnectingState",
    "Context",
    "DisconnectedState",
    "EXIT_BIND_FAILURE",
    "EXIT_OK",
    "IdleState",
    "StateKind",
    "build_context",
    "build_machine",
    "run_controller",
]
