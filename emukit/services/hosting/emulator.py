"""Static hosting emulator serving the project's public directory."""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
import logging
from pathlib import Path
import threading
from typing import Any

from emukit.core.errors import EmulatorStartError
from emukit.services.base import EmulatorInfo, EmulatorKind, ServiceEmulator


@dataclass(slots=True)
class HostingArgs:
    info: EmulatorInfo
    public_dir: Path


class _HostingRequestHandler(SimpleHTTPRequestHandler):
    server_version = "emukit-hosting"

    def __init__(self, *args: Any, access_logger: logging.Logger, **kwargs: Any) -> None:
        self._access_logger = access_logger
        super().__init__(*args, **kwargs)

    def log_message(self, format: str, *args: Any) -> None:
        self._access_logger.debug(format % args, extra={"service": "hosting"})


class Emulator(ServiceEmulator):
    kind = EmulatorKind.HOSTING

    def __init__(self, args: HostingArgs) -> None:
        super().__init__(args.info)
        self.args = args
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def bound_endpoint(self) -> tuple[str, int] | None:
        if self._server is None:
            return None
        host, port = self._server.server_address[:2]
        return (str(host), int(port))

    async def _launch(self) -> None:
        handler = partial(
            _HostingRequestHandler,
            directory=str(self.args.public_dir),
            access_logger=self.logger,
        )
        try:
            self._server = ThreadingHTTPServer((self.info.host, self.info.port), handler)
        except OSError as exc:
            raise EmulatorStartError(f"hosting emulator could not bind {self.info.address}: {exc}") from exc
        self._server.daemon_threads = True
        self._thread = threading.Thread(target=self._server.serve_forever, name="emukit-hosting", daemon=True)
        self._thread.start()
        self.logger.info(
            f"Serving {self.args.public_dir} at http://{self.info.address}",
            extra={"service": self.name},
        )

    async def _shutdown(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        self._thread = None
