"""FastAPI application served by the emulator hub."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request

from emukit import __version__
from emukit.core.errors import EmulatorError, ExportError
from emukit.core.export import HubExport
from emukit.core.logging import get_logger
from emukit.core.registry import EmulatorRegistry


def create_app(*, registry: EmulatorRegistry, project_id: str | None) -> FastAPI:
    logger = get_logger("emukit.services.hub.api")
    app = FastAPI(title="emukit hub", version=__version__, docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/")
    def locator() -> dict[str, Any]:
        return {
            "version": __version__,
            "project_id": project_id,
            "emulators": registry.snapshot(),
        }

    @app.get("/emulators")
    def emulators() -> dict[str, Any]:
        return registry.snapshot()

    @app.post("/_admin/export")
    async def export(request: Request) -> dict[str, Any]:
        try:
            payload = await request.json()
        except json.JSONDecodeError as exc:
            raise HTTPException(status_code=400, detail="request body must be JSON") from exc
        raw_path = payload.get("path") if isinstance(payload, dict) else None
        if not isinstance(raw_path, str) or not raw_path.strip():
            raise HTTPException(status_code=400, detail="export request requires a 'path' string")

        export_path = Path(raw_path).expanduser().resolve()
        logger.info(f"Received export request. Exporting data to {export_path}", extra={"service": "hub"})
        try:
            metadata = await HubExport(registry, project_id, export_path).export_all()
        except ExportError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except (EmulatorError, OSError) as exc:
            logger.error(f"Export failed: {exc}", extra={"service": "hub"})
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"message": "OK", "path": str(export_path), "metadata": metadata.to_dict()}

    return app
