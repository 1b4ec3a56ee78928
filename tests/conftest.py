from __future__ import annotations

import logging
from pathlib import Path
import socket
from typing import Any

import pytest

from emukit.config.schema import LoggingConfig
from emukit.core.logging import configure_logging
from emukit.services.base import EmulatorKind, ServiceEmulator


# Every emukit.* logger propagates to this configured parent.
configure_logging(LoggingConfig(level="DEBUG"), force=True)


class _RecordList(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def emukit_records() -> Any:
    handler = _RecordList()
    logger = logging.getLogger("emukit")
    previous_level = logger.level
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        logger.removeHandler(handler)
        logger.setLevel(previous_level)


def free_port(host: str = "127.0.0.1") -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return int(sock.getsockname()[1])


def fake_emulator_type(
    emulator_kind: EmulatorKind,
    journal: list[tuple[str, str]],
    *,
    exportable: bool = False,
    fail_connect: bool = False,
    fail_stop: bool = False,
) -> type[ServiceEmulator]:
    class _FakeEmulator(ServiceEmulator):
        kind = emulator_kind
        supports_export = exportable
        instances: list[Any] = []

        def __init__(self, args: Any) -> None:
            super().__init__(args.info)
            self.args = args
            type(self).instances.append(self)
            journal.append(("init", self.name))

        async def _launch(self) -> None:
            journal.append(("start", self.name))

        async def _shutdown(self) -> None:
            journal.append(("stop", self.name))
            if fail_stop:
                raise RuntimeError(f"{self.name} refused to stop")

        async def connect(self) -> None:
            journal.append(("connect", self.name))
            if fail_connect:
                raise TimeoutError(f"{self.name} never answered")

        async def export_data(self, export_path: Path, export_name: str, project_id: str | None) -> None:
            journal.append(("export", self.name))
            (export_path / export_name).mkdir(parents=True, exist_ok=True)

    _FakeEmulator.instances = []
    return _FakeEmulator


@pytest.fixture(autouse=True)
def _hub_locator_dir(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Path:
    locator_dir = tmp_path_factory.mktemp("hub-locator")
    monkeypatch.setenv("EMUKIT_HUB_LOCATOR_DIR", str(locator_dir))
    return locator_dir
