"""Per-session table of running emulator instances."""

from __future__ import annotations

import threading
from typing import Any

from emukit.core.errors import DuplicateEmulatorError
from emukit.core.logging import get_logger
from emukit.services.base import EmulatorKind, ServiceEmulator


class EmulatorRegistry:
    """Running instances keyed by kind, in registration order.

    The registry only references instances; the controller that started them
    owns their lifecycle.
    """

    def __init__(self) -> None:
        self.logger = get_logger("emukit.registry")
        self._instances: dict[EmulatorKind, ServiceEmulator] = {}
        self._lock = threading.RLock()

    async def start(self, instance: ServiceEmulator) -> None:
        kind = instance.kind
        with self._lock:
            if kind in self._instances:
                raise DuplicateEmulatorError(f"{kind.description} is already running")
        await instance.start()
        with self._lock:
            self._instances[kind] = instance
        self.logger.debug(
            f"registered {kind.description} at {instance.get_info().address}",
            extra={"service": kind.value},
        )

    async def stop(self, kind: EmulatorKind) -> None:
        instance = self.get(kind)
        if instance is None:
            return
        try:
            await instance.stop()
        finally:
            with self._lock:
                if self._instances.get(kind) is instance:
                    del self._instances[kind]

    def get(self, kind: EmulatorKind) -> ServiceEmulator | None:
        with self._lock:
            return self._instances.get(kind)

    def is_running(self, kind: EmulatorKind) -> bool:
        with self._lock:
            return kind in self._instances

    def list_running(self) -> list[EmulatorKind]:
        with self._lock:
            return list(self._instances)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            instances = list(self._instances.values())
        return {instance.name: instance.get_info().to_dict() for instance in instances}
