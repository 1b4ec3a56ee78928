"""Emulator kinds, addresses and the instance interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar

from emukit.core.errors import EmulatorStateError, ExportError
from emukit.core.logging import EventLogger, get_logger


class EmulatorKind(str, Enum):
    HUB = "hub"
    FUNCTIONS = "functions"
    FIRESTORE = "firestore"
    DATABASE = "database"
    HOSTING = "hosting"
    PUBSUB = "pubsub"

    @property
    def description(self) -> str:
        if self is EmulatorKind.HUB:
            return "emulator hub"
        return f"{self.value} emulator"


# Start precedence for everything except the hub.
SERVICE_EMULATORS: tuple[EmulatorKind, ...] = (
    EmulatorKind.FUNCTIONS,
    EmulatorKind.FIRESTORE,
    EmulatorKind.DATABASE,
    EmulatorKind.HOSTING,
    EmulatorKind.PUBSUB,
)
ALL_EMULATORS: tuple[EmulatorKind, ...] = (EmulatorKind.HUB, *SERVICE_EMULATORS)
IMPORT_EXPORT_EMULATORS: tuple[EmulatorKind, ...] = (EmulatorKind.FIRESTORE,)


@dataclass(frozen=True, slots=True)
class EmulatorInfo:
    kind: EmulatorKind
    host: str
    port: int

    def __post_init__(self) -> None:
        if not str(self.host).strip():
            raise ValueError(f"{self.kind.value} emulator host must not be empty")
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ValueError(f"{self.kind.value} emulator port must be an integer")
        if self.port < 1 or self.port > 65535:
            raise ValueError(f"{self.kind.value} emulator port '{self.port}' is out of range")

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.kind.value, "host": self.host, "port": self.port}


class EmulatorState(str, Enum):
    INERT = "inert"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"


class ServiceEmulator(ABC):
    """One emulator instance.

    Instances are constructed inert, started once and never reused after stop.
    Subclasses implement ``_launch`` and ``_shutdown``; ``connect`` and
    ``export_data`` are optional capabilities.
    """

    kind: ClassVar[EmulatorKind]
    supports_export: ClassVar[bool] = False

    def __init__(self, info: EmulatorInfo) -> None:
        if info.kind is not self.kind:
            raise ValueError(f"{type(self).__name__} cannot run with {info.kind.value} address")
        self.info = info
        self.state = EmulatorState.INERT
        self.logger = get_logger(f"emukit.services.{self.kind.value}")
        self.event_logger = EventLogger(logger=self.logger, service_name="emukit")

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def running(self) -> bool:
        return self.state is EmulatorState.RUNNING

    def get_info(self) -> EmulatorInfo:
        return self.info

    async def start(self) -> None:
        if self.state is not EmulatorState.INERT:
            raise EmulatorStateError(f"{self.kind.description} cannot start from state '{self.state.value}'")
        self.state = EmulatorState.STARTING
        try:
            await self._launch()
        except BaseException:
            # A launch interrupted midway may already hold threads, sockets or a child process.
            try:
                await self._shutdown()
            except Exception as exc:
                self.logger.warning(
                    f"cleanup after failed start of the {self.kind.description} failed: {exc}",
                    extra={"service": self.name},
                )
            finally:
                self.state = EmulatorState.STOPPED
            raise
        self.state = EmulatorState.RUNNING
        self.event_logger.emit(
            message=f"{self.kind.description} started",
            service=self.name,
            action="service_start",
            event_type="start",
            payload=self.info.to_dict(),
        )

    async def stop(self) -> None:
        if self.state in (EmulatorState.INERT, EmulatorState.STOPPED):
            self.state = EmulatorState.STOPPED
            return
        try:
            await self._shutdown()
        finally:
            self.state = EmulatorState.STOPPED
        self.event_logger.emit(
            message=f"{self.kind.description} stopped",
            service=self.name,
            action="service_stop",
            event_type="end",
        )

    async def connect(self) -> None:
        """Post-startup handshake, run once every selected emulator is up."""

    async def export_data(self, export_path: Path, export_name: str, project_id: str | None) -> None:
        _ = (export_path, export_name, project_id)
        raise ExportError(f"{self.kind.description} does not support export")

    @abstractmethod
    async def _launch(self) -> None: ...

    @abstractmethod
    async def _shutdown(self) -> None: ...
