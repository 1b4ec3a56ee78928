"""Pub/Sub broker emulator."""

from __future__ import annotations

from dataclasses import dataclass

from emukit.services.base import EmulatorKind
from emukit.services.process import ProcessArgs, ProcessEmulator


@dataclass(slots=True)
class PubsubArgs(ProcessArgs):
    project_id: str = ""


class Emulator(ProcessEmulator):
    kind = EmulatorKind.PUBSUB

    def __init__(self, args: PubsubArgs) -> None:
        if not args.project_id:
            raise ValueError("the pubsub emulator requires a project id")
        super().__init__(args)
        self.args = args

    def engine_flags(self) -> dict[str, object]:
        return {**super().engine_flags(), "project": self.args.project_id}

    def build_env(self) -> dict[str, str]:
        return {**super().build_env(), "PUBSUB_PROJECT_ID": self.args.project_id}
