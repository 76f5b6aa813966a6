"""ASGI app and listener for the control API."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from typing import Optional

import uvicorn  # type: ignore
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import router
from .services.bridge import ControlBridge

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="USB Switch Control", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    app.state.bridge = None
    return app


class ControlServer:
    """Binds the listen socket up front and serves the app with uvicorn.

    Binding is separate from serving so that a busy port is reported
    synchronously, before the controller starts looking for the device.
    """

    def __init__(self, app: Optional[FastAPI] = None, *, host: str = "0.0.0.0") -> None:
        self.app = app or create_app()
        self._host = host
        self._socket: Optional[socket.socket] = None
        self._server: Optional[uvicorn.Server] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def bound_port(self) -> Optional[int]:
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    @property
    def bridge(self) -> Optional[ControlBridge]:
        return self.app.state.bridge

    def install(self, bridge: ControlBridge) -> None:
        self.app.state.bridge = bridge

    def uninstall(self) -> None:
        self.app.state.bridge = None

    def bind(self, port: int) -> None:
        """Bind and listen on ``port``; raises ``OSError`` on failure."""

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._host, port))
            sock.listen(128)
        except OSError:
            sock.close()
            raise
        sock.setblocking(False)
        self._socket = sock

    def start(self) -> "asyncio.Task[None]":
        """Serve the app on the bound socket in a background task."""

        if self._socket is None:
            raise RuntimeError("bind() must be called before start()")
        config = uvicorn.Config(self.app, log_level="info", lifespan="off")
        self._server = uvicorn.Server(config)
        self._task = asyncio.get_running_loop().create_task(
            self._server.serve(sockets=[self._socket])
        )
        self._task.add_done_callback(self._serve_done)
        return self._task

    @staticmethod
    def _serve_done(task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Control API stopped unexpectedly", exc_info=exc)

    async def stop(self) -> None:
        self.uninstall()
        if self._server is not None:
            self._server.should_exit = True
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None


__all__ = ["ControlServer", "create_app"]
