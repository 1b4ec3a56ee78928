"""Emulator implementation loading."""

from __future__ import annotations

import importlib
from typing import Any

from emukit.core.errors import PluginError
from emukit.services.base import EmulatorKind, ServiceEmulator


EMULATOR_MODULES: dict[EmulatorKind, str] = {
    EmulatorKind.HUB: "emukit.services.hub.emulator",
    EmulatorKind.FUNCTIONS: "emukit.services.functions.emulator",
    EmulatorKind.FIRESTORE: "emukit.services.firestore.emulator",
    EmulatorKind.DATABASE: "emukit.services.database.emulator",
    EmulatorKind.HOSTING: "emukit.services.hosting.emulator",
    EmulatorKind.PUBSUB: "emukit.services.pubsub.emulator",
}


def load_emulator_type(kind: EmulatorKind) -> type[ServiceEmulator]:
    module_path = EMULATOR_MODULES.get(kind)
    if module_path is None:
        raise PluginError(f"no emulator module registered for '{kind}'")
    try:
        module = importlib.import_module(module_path)
    except Exception as exc:  # pragma: no cover - passthrough for diagnostics
        raise PluginError(f"failed to import module '{module_path}': {exc}") from exc

    emulator_type = getattr(module, "Emulator", None)
    if emulator_type is None:
        raise PluginError(f"module '{module_path}' does not expose Emulator")
    if not isinstance(emulator_type, type) or not issubclass(emulator_type, ServiceEmulator):
        raise PluginError(f"Emulator in '{module_path}' must subclass ServiceEmulator")
    if emulator_type.kind is not kind:
        raise PluginError(f"Emulator in '{module_path}' implements '{emulator_type.kind.value}', not '{kind.value}'")
    return emulator_type


class PluginRegistry:
    def __init__(self, overrides: dict[EmulatorKind, type[ServiceEmulator]] | None = None) -> None:
        self._overrides = dict(overrides or {})

    def emulator_type(self, kind: EmulatorKind) -> type[ServiceEmulator]:
        override = self._overrides.get(kind)
        if override is not None:
            return override
        return load_emulator_type(kind)

    def instantiate(self, kind: EmulatorKind, args: Any) -> ServiceEmulator:
        return self.emulator_type(kind)(args)
