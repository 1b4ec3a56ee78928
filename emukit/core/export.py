"""Export of emulator state and the metadata document used to import it."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
from typing import Any

from emukit import __version__
from emukit.core.constants import get_export_name
from emukit.core.errors import ExportError, ExportMetadataError, PreconditionError
from emukit.core.logging import get_logger
from emukit.core.registry import EmulatorRegistry
from emukit.services.base import IMPORT_EXPORT_EMULATORS, EmulatorKind

METADATA_FILE_NAME = "metadata.json"


def _major_version(version: str) -> int | None:
    head = version.strip().split(".", 1)[0]
    return int(head) if head.isdigit() else None


@dataclass(slots=True)
class ExportMetadata:
    version: str
    exports: dict[EmulatorKind, str] = field(default_factory=dict)

    def get(self, kind: EmulatorKind) -> str | None:
        return self.exports.get(kind)

    def to_dict(self) -> dict[str, str]:
        payload = {"version": self.version}
        for kind, name in self.exports.items():
            payload[kind.value] = name
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> ExportMetadata:
        if not isinstance(payload, dict):
            raise ExportMetadataError("export metadata must be a JSON object")
        version = payload.get("version")
        if not isinstance(version, str) or not version.strip():
            raise ExportMetadataError("export metadata is missing a 'version' string")
        exports: dict[EmulatorKind, str] = {}
        for kind in IMPORT_EXPORT_EMULATORS:
            name = payload.get(kind.value)
            if name is None:
                continue
            if not isinstance(name, str) or not name.strip():
                raise ExportMetadataError(f"export metadata field '{kind.value}' must be a non-empty string")
            relative = Path(name)
            if relative.is_absolute() or ".." in relative.parts:
                raise ExportMetadataError(
                    f"export metadata field '{kind.value}' must name a directory inside the export, got '{name}'"
                )
            exports[kind] = name
        return cls(version=version, exports=exports)


def check_metadata_version(metadata: ExportMetadata, current: str = __version__) -> None:
    found = _major_version(metadata.version)
    if found is None:
        raise ExportMetadataError(f"unreadable export metadata version '{metadata.version}'")
    supported = _major_version(current)
    if supported is not None and found > supported:
        raise ExportMetadataError(
            f"export metadata version {metadata.version} is newer than emukit {current}; upgrade to import it"
        )


def load_export_metadata(import_dir: Path) -> ExportMetadata:
    metadata_path = import_dir / METADATA_FILE_NAME
    if not metadata_path.is_file():
        raise PreconditionError(f"Could not find import metadata file {metadata_path}")
    try:
        payload = json.loads(metadata_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ExportMetadataError(f"import metadata file {metadata_path} is not valid JSON: {exc}") from exc
    metadata = ExportMetadata.from_dict(payload)
    check_metadata_version(metadata)
    ignored = sorted(set(payload) - {"version"} - {kind.value for kind in metadata.exports})
    if ignored:
        get_logger("emukit.export").debug(
            f"ignoring unknown export metadata keys: {', '.join(ignored)}",
            extra={"service": "emulators"},
        )
    return metadata


def seed_path_for(kind: EmulatorKind, import_dir: Path, metadata: ExportMetadata) -> Path | None:
    export_name = metadata.get(kind)
    if export_name is None:
        return None
    export_root = import_dir / export_name
    if kind is EmulatorKind.FIRESTORE:
        return export_root / f"{Path(export_name).name}.overall_export_metadata"
    return export_root


class HubExport:
    def __init__(self, registry: EmulatorRegistry, project_id: str | None, export_path: Path) -> None:
        self.registry = registry
        self.project_id = project_id
        self.export_path = export_path
        self.logger = get_logger("emukit.export")

    def exportable(self) -> list[EmulatorKind]:
        exportable: list[EmulatorKind] = []
        for kind in IMPORT_EXPORT_EMULATORS:
            instance = self.registry.get(kind)
            if instance is not None and instance.supports_export:
                exportable.append(kind)
        return exportable

    async def export_all(self) -> ExportMetadata:
        to_export = self.exportable()
        if not to_export:
            raise ExportError("No running emulators support import/export.")

        # TODO: merge with an existing metadata.json once a second export-capable
        # emulator exists, so a partial export does not drop the other entries.
        self.export_path.mkdir(parents=True, exist_ok=True)
        metadata = ExportMetadata(version=__version__)
        for kind in to_export:
            instance = self.registry.get(kind)
            if instance is None:
                continue
            export_name = get_export_name(kind)
            self.logger.info(
                f"Exporting {kind.value} data to {self.export_path / export_name}",
                extra={"service": kind.value},
            )
            await instance.export_data(self.export_path, export_name, self.project_id)
            metadata.exports[kind] = export_name

        metadata_path = self.export_path / METADATA_FILE_NAME
        metadata_path.write_text(json.dumps(metadata.to_dict()), encoding="utf-8")
        return metadata
