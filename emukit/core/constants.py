"""Default addresses, client conventions and engine commands per emulator."""

from __future__ import annotations

import os
from pathlib import Path
import shlex

from emukit.config.schema import ProjectConfig
from emukit.services.base import EmulatorInfo, EmulatorKind

DEFAULT_HOST = "localhost"

DEFAULT_PORTS: dict[EmulatorKind, int] = {
    EmulatorKind.HUB: 4400,
    EmulatorKind.FUNCTIONS: 5001,
    EmulatorKind.FIRESTORE: 8080,
    EmulatorKind.DATABASE: 9000,
    EmulatorKind.HOSTING: 5000,
    EmulatorKind.PUBSUB: 8085,
}

# Environment variables client SDKs read to find a running emulator.
CLIENT_ENV_VARS: dict[EmulatorKind, str] = {
    EmulatorKind.FIRESTORE: "FIRESTORE_EMULATOR_HOST",
    EmulatorKind.DATABASE: "FIREBASE_DATABASE_EMULATOR_HOST",
}

EXPORT_NAMES: dict[EmulatorKind, str] = {
    EmulatorKind.FIRESTORE: "firestore_export",
}

DEFAULT_INSPECT_PORT = 9229

CACHE_DIR = Path(os.environ.get("EMUKIT_CACHE_DIR", Path.home() / ".cache" / "emukit" / "emulators"))

DEFAULT_COMMANDS: dict[EmulatorKind, list[str]] = {
    EmulatorKind.FUNCTIONS: ["node", str(CACHE_DIR / "functions-emulator" / "runtime.js")],
    EmulatorKind.FIRESTORE: ["java", "-jar", str(CACHE_DIR / "cloud-firestore-emulator.jar")],
    EmulatorKind.DATABASE: ["java", "-Duser.language=en", "-jar", str(CACHE_DIR / "firebase-database-emulator.jar")],
    EmulatorKind.PUBSUB: [str(CACHE_DIR / "pubsub-emulator" / "bin" / "cloud-pubsub-emulator")],
}


def get_address(config: ProjectConfig, kind: EmulatorKind) -> EmulatorInfo:
    key = f"emulators.{kind.value}"
    host = str(config.get(f"{key}.host") or DEFAULT_HOST).strip()
    raw_port = config.get(f"{key}.port")
    port = DEFAULT_PORTS[kind] if raw_port is None else int(raw_port)
    return EmulatorInfo(kind=kind, host=host, port=port)


def get_command(config: ProjectConfig, kind: EmulatorKind) -> list[str]:
    configured = config.get(f"emulators.{kind.value}.command")
    if configured is None:
        return list(DEFAULT_COMMANDS[kind])
    if isinstance(configured, str):
        return shlex.split(configured)
    return [str(part) for part in configured]


def get_export_name(kind: EmulatorKind) -> str:
    try:
        return EXPORT_NAMES[kind]
    except KeyError:
        raise ValueError(f"Export name not defined for {kind.value}") from None
