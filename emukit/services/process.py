"""Emulators backed by an external engine process."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import os
from pathlib import Path
import subprocess
from typing import IO

from emukit.config.schema import RuntimeConfig
from emukit.core.errors import EmulatorStartError
from emukit.core.ports import wait_until_port_bound
from emukit.services.base import EmulatorInfo, ServiceEmulator


@dataclass(slots=True)
class ProcessArgs:
    info: EmulatorInfo
    command: list[str]
    working_dir: Path
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    env: dict[str, str] = field(default_factory=dict)


def cli_flags(values: dict[str, object]) -> list[str]:
    flags: list[str] = []
    for key, value in values.items():
        if value is None or value is False:
            continue
        flags.append(f"--{key}")
        if value is not True:
            flags.append(str(value))
    return flags


class ProcessEmulator(ServiceEmulator):
    """Launches the engine command and waits for it to listen on ``connect``."""

    def __init__(self, args: ProcessArgs) -> None:
        super().__init__(args.info)
        self.process_args = args
        self._process: subprocess.Popen[bytes] | None = None
        self._log_handle: IO[bytes] | None = None

    @property
    def log_path(self) -> Path:
        return self.process_args.working_dir / f"{self.name}-debug.log"

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    def engine_flags(self) -> dict[str, object]:
        return {"host": self.info.host, "port": self.info.port}

    def build_command(self) -> list[str]:
        if not self.process_args.command:
            raise EmulatorStartError(f"no command configured for the {self.kind.description}")
        return [*self.process_args.command, *cli_flags(self.engine_flags())]

    def build_env(self) -> dict[str, str]:
        return {**os.environ, **self.process_args.env}

    async def _launch(self) -> None:
        command = self.build_command()
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        handle = self.log_path.open("ab")
        try:
            self._process = subprocess.Popen(
                command,
                cwd=self.process_args.working_dir,
                env=self.build_env(),
                stdin=subprocess.DEVNULL,
                stdout=handle,
                stderr=subprocess.STDOUT,
            )
        except OSError as exc:
            handle.close()
            raise EmulatorStartError(f"failed to launch the {self.kind.description} ({command[0]}): {exc}") from exc
        self._log_handle = handle
        self.logger.debug(
            f"launched {' '.join(command)}",
            extra={"service": self.name, "payload": {"pid": self._process.pid, "log": str(self.log_path)}},
        )

    async def connect(self) -> None:
        process = self._process
        if process is not None and process.poll() is not None:
            raise EmulatorStartError(
                f"{self.kind.description} exited with code {process.returncode}, see {self.log_path}"
            )
        runtime = self.process_args.runtime
        await wait_until_port_bound(
            self.info.port,
            self.info.host,
            poll_interval=runtime.port_poll_interval_seconds,
            timeout=runtime.port_wait_timeout_seconds,
        )

    async def _shutdown(self) -> None:
        process = self._process
        try:
            if process is not None and process.poll() is None:
                process.terminate()
                try:
                    await asyncio.to_thread(process.wait, self.process_args.runtime.stop_timeout_seconds)
                except subprocess.TimeoutExpired:
                    self.logger.warning(
                        f"{self.kind.description} did not exit in time, killing pid {process.pid}",
                        extra={"service": self.name},
                    )
                    process.kill()
                    await asyncio.to_thread(process.wait)
        finally:
            self._process = None
            if self._log_handle is not None:
                self._log_handle.close()
                self._log_handle = None
