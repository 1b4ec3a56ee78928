"""Document database emulator."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
from pathlib import Path
from typing import Any
from urllib import error, request

from emukit.core.errors import ExportError
from emukit.services.base import EmulatorKind
from emukit.services.process import ProcessArgs, ProcessEmulator


@dataclass(slots=True)
class FirestoreArgs(ProcessArgs):
    project_id: str | None = None
    rules: Path | None = None
    seed_from_export: Path | None = None


class Emulator(ProcessEmulator):
    kind = EmulatorKind.FIRESTORE
    supports_export = True

    EXPORT_TIMEOUT_SECONDS = 60.0

    def __init__(self, args: FirestoreArgs) -> None:
        super().__init__(args)
        self.args = args

    def engine_flags(self) -> dict[str, object]:
        return {
            **super().engine_flags(),
            "rules": self.args.rules,
            "seed_from_export": self.args.seed_from_export,
        }

    async def export_data(self, export_path: Path, export_name: str, project_id: str | None) -> None:
        project = project_id or self.args.project_id
        if not project:
            raise ExportError("Cannot export Firestore data without a project id")
        body = {
            "database": f"projects/{project}/databases/(default)",
            "export_directory": str(export_path),
            "export_name": export_name,
        }
        url = f"http://{self.info.address}/emulator/v1/projects/{project}:export"
        await asyncio.to_thread(self._post_json, url, body)
        self.event_logger.emit(
            message="firestore data exported",
            service=self.name,
            action="export",
            outcome="success",
            payload={"export_directory": str(export_path), "export_name": export_name},
        )

    def _post_json(self, url: str, body: dict[str, Any]) -> None:
        req = request.Request(
            url,
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.EXPORT_TIMEOUT_SECONDS):
                return
        except error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace").strip()
            raise ExportError(f"Firestore export failed with HTTP {exc.code}: {detail or exc.reason}") from exc
        except (error.URLError, OSError) as exc:
            raise ExportError(f"Firestore export request to {url} failed: {exc}") from exc
