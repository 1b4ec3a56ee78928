"""Emulator hub: the always-on directory of running emulators."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import socket
import threading
import time

import uvicorn

from emukit.config.schema import RuntimeConfig
from emukit.core.errors import EmulatorStartError
from emukit.core.registry import EmulatorRegistry
from emukit.services.base import EmulatorInfo, EmulatorKind, ServiceEmulator
from emukit.services.hub.api import create_app
from emukit.services.hub.locator import remove_locator, write_locator


@dataclass(slots=True)
class HubArgs:
    info: EmulatorInfo
    registry: EmulatorRegistry
    project_id: str | None = None
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)


class Emulator(ServiceEmulator):
    """Serves the hub API with uvicorn on a daemon thread.

    The listening socket is bound here rather than inside uvicorn so the port
    is released on shutdown even when uvicorn never finished starting.
    """

    kind = EmulatorKind.HUB

    def __init__(self, args: HubArgs) -> None:
        super().__init__(args.info)
        self.args = args
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None
        self._socket: socket.socket | None = None

    def _bind(self) -> socket.socket:
        try:
            family = socket.getaddrinfo(self.info.host, self.info.port, type=socket.SOCK_STREAM)[0][0]
            return socket.create_server((self.info.host, self.info.port), family=family)
        except OSError as exc:
            raise EmulatorStartError(f"emulator hub could not bind {self.info.address}: {exc}") from exc

    async def _launch(self) -> None:
        self._socket = self._bind()
        app = create_app(registry=self.args.registry, project_id=self.args.project_id)
        config = uvicorn.Config(
            app,
            log_level="warning",
            lifespan="off",
            access_log=False,
        )
        server = uvicorn.Server(config)
        thread = threading.Thread(
            target=server.run,
            kwargs={"sockets": [self._socket]},
            name="emukit-hub",
            daemon=True,
        )
        self._server = server
        self._thread = thread
        thread.start()

        runtime = self.args.runtime
        deadline = time.monotonic() + runtime.port_wait_timeout_seconds
        while not server.started:
            if not thread.is_alive():
                raise EmulatorStartError(f"emulator hub failed to start on {self.info.address}")
            if time.monotonic() >= deadline:
                raise EmulatorStartError(f"emulator hub did not start on {self.info.address} in time")
            await asyncio.sleep(min(0.05, runtime.port_poll_interval_seconds))

        write_locator(self.info, self.args.project_id)
        self.logger.info(f"Emulator hub running at http://{self.info.address}", extra={"service": self.name})

    async def _shutdown(self) -> None:
        try:
            if self._server is not None:
                self._server.should_exit = True
            if self._thread is not None and self._thread.is_alive():
                await asyncio.to_thread(self._thread.join, self.args.runtime.stop_timeout_seconds)
        finally:
            self._server = None
            self._thread = None
            if self._socket is not None:
                self._socket.close()
                self._socket = None
            remove_locator(self.info, self.args.project_id)
