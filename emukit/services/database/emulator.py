"""Realtime database emulator."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from emukit.services.base import EmulatorKind
from emukit.services.process import ProcessArgs, ProcessEmulator


@dataclass(slots=True)
class DatabaseArgs(ProcessArgs):
    project_id: str | None = None
    rules: Path | None = None
    seed_from_export: Path | None = None
    functions_emulator_host: str | None = None
    functions_emulator_port: int | None = None


class Emulator(ProcessEmulator):
    kind = EmulatorKind.DATABASE

    def __init__(self, args: DatabaseArgs) -> None:
        super().__init__(args)
        self.args = args

    def engine_flags(self) -> dict[str, object]:
        return {
            **super().engine_flags(),
            "rules": self.args.rules,
            "seed_from_export": self.args.seed_from_export,
            "functions_emulator_host": self.args.functions_emulator_host,
            "functions_emulator_port": self.args.functions_emulator_port,
        }
