"""Locator file recording where a session's hub actually listens.

The hub may move off its configured port, so commands run from another
process (``emukit export``) read the address back from here.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
import re
import tempfile

from emukit import __version__
from emukit.services.base import EmulatorInfo, EmulatorKind

LOCATOR_DIR_ENV = "EMUKIT_HUB_LOCATOR_DIR"
_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_.-]")


def locator_path(project_id: str | None) -> Path:
    base = Path(os.environ.get(LOCATOR_DIR_ENV) or tempfile.gettempdir())
    name = _UNSAFE_CHARS_RE.sub("_", project_id or "") or "default"
    return base / f"emukit-hub-{name}.json"


def write_locator(info: EmulatorInfo, project_id: str | None) -> Path:
    path = locator_path(project_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"version": __version__, "host": info.host, "port": info.port, "pid": os.getpid()}
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def read_locator(project_id: str | None) -> EmulatorInfo | None:
    path = locator_path(project_id)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        return EmulatorInfo(kind=EmulatorKind.HUB, host=str(payload["host"]), port=int(payload["port"]))
    except (OSError, ValueError, KeyError, TypeError):
        return None


def remove_locator(info: EmulatorInfo, project_id: str | None) -> None:
    current = read_locator(project_id)
    if current is None or current.address != info.address:
        return
    locator_path(project_id).unlink(missing_ok=True)
