"""Function runtime emulator."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from emukit.services.base import EmulatorKind
from emukit.services.process import ProcessArgs, ProcessEmulator


@dataclass(slots=True)
class FunctionsArgs(ProcessArgs):
    functions_dir: Path | None = None
    project_id: str | None = None
    debug_port: int | None = None


class Emulator(ProcessEmulator):
    kind = EmulatorKind.FUNCTIONS

    def __init__(self, args: FunctionsArgs) -> None:
        super().__init__(args)
        self.args = args

    def engine_flags(self) -> dict[str, object]:
        return {
            **super().engine_flags(),
            "functions_dir": self.args.functions_dir,
            "project_id": self.args.project_id,
        }

    def build_command(self) -> list[str]:
        command = super().build_command()
        if self.args.debug_port is None:
            return command
        # The inspector flag belongs to the runtime binary, ahead of the script.
        executable, rest = command[0], command[1:]
        return [executable, f"--inspect={self.args.debug_port}", *rest]

    def build_env(self) -> dict[str, str]:
        env = {**super().build_env(), "FUNCTIONS_EMULATOR": "true"}
        if self.args.project_id:
            env["GCLOUD_PROJECT"] = self.args.project_id
        return env
