import asyncio
import json
import logging
from pathlib import Path
from typing import Any
from urllib import request

import pytest
import uvicorn

from conftest import fake_emulator_type, free_port
from emukit.config.schema import parse_config
from emukit.core.controller import EmulatorController, StartOptions
from emukit.core.errors import ExportMetadataError, PortTakenError, PreconditionError
from emukit.core.export import METADATA_FILE_NAME, HubExport
from emukit.core.plugin import PluginRegistry
from emukit.core.ports import is_port_free
from emukit.services.base import ALL_EMULATORS, EmulatorKind


class _PortTable:
    def __init__(self, occupied: set[int] | None = None) -> None:
        self.occupied = set(occupied or ())
        self.calls: list[int] = []

    def __call__(self, port: int, host: str) -> bool:
        self.calls.append(port)
        return port not in self.occupied


@pytest.fixture
def port_table(monkeypatch: pytest.MonkeyPatch) -> _PortTable:
    fake = _PortTable()
    monkeypatch.setattr("emukit.core.controller.is_port_free", fake)
    monkeypatch.setattr("emukit.core.ports.is_port_free", fake)
    return fake


def _fake_plugins(
    journal: list[tuple[str, str]],
    overrides: dict[EmulatorKind, Any] | None = None,
) -> PluginRegistry:
    types = {kind: fake_emulator_type(kind, journal) for kind in ALL_EMULATORS}
    types.update(overrides or {})
    return PluginRegistry(overrides=types)


def _config(data: dict[str, Any], tmp_path: Path) -> Any:
    return parse_config(data, project_dir=tmp_path, path=tmp_path / "emukit.yml")


def _warnings(records: list[logging.LogRecord]) -> list[str]:
    return [record.getMessage() for record in records if record.levelno == logging.WARNING]


def test_targets_follow_project_config_and_only_filter(tmp_path: Path) -> None:
    config = _config(
        {
            "firestore": {"rules": "firestore.rules"},
            "hosting": {"public": "public"},
            "emulators": {"database": {"port": 9001}},
        },
        tmp_path,
    )
    controller = EmulatorController(config)
    assert controller.targets == (
        EmulatorKind.HUB,
        EmulatorKind.FIRESTORE,
        EmulatorKind.DATABASE,
        EmulatorKind.HOSTING,
    )

    filtered = EmulatorController(config, StartOptions(only=["hosting", "pubsub"]))
    assert filtered.targets == (EmulatorKind.HUB, EmulatorKind.HOSTING)
    assert filtered.ignored_requests() == ["pubsub"]


def test_hub_is_always_targeted(tmp_path: Path) -> None:
    controller = EmulatorController(_config({}, tmp_path), StartOptions(only=["firestore"]))
    assert controller.targets == (EmulatorKind.HUB,)
    assert controller.should_start(EmulatorKind.HUB)
    assert not controller.should_start(EmulatorKind.FIRESTORE)


def test_firestore_and_hosting_start_in_order_and_shut_down(tmp_path: Path, port_table: _PortTable) -> None:
    journal: list[tuple[str, str]] = []
    config = _config({"project": "demo-test", "firestore": {}, "hosting": {}}, tmp_path)
    controller = EmulatorController(
        config,
        StartOptions(only=["firestore", "hosting"]),
        plugins=_fake_plugins(journal),
    )

    asyncio.run(controller.start_all())

    assert controller.registry.list_running() == [
        EmulatorKind.HUB,
        EmulatorKind.FIRESTORE,
        EmulatorKind.HOSTING,
    ]
    assert controller.registry.get(EmulatorKind.FIRESTORE).get_info().port == 8080
    assert controller.registry.get(EmulatorKind.HOSTING).get_info().port == 5000
    assert [entry for entry in journal if entry[0] == "connect"] == [
        ("connect", "hub"),
        ("connect", "firestore"),
        ("connect", "hosting"),
    ]

    assert asyncio.run(controller.clean_shutdown()) is True
    assert controller.registry.list_running() == []
    assert [entry for entry in journal if entry[0] == "stop"] == [
        ("stop", "hosting"),
        ("stop", "firestore"),
        ("stop", "hub"),
    ]


def test_unselected_services_are_never_checked_or_registered(tmp_path: Path, port_table: _PortTable) -> None:
    journal: list[tuple[str, str]] = []
    config = _config(
        {
            "firestore": {},
            "database": {},
            "emulators": {"database": {"port": 9123}},
        },
        tmp_path,
    )
    controller = EmulatorController(config, StartOptions(only=["firestore"]), plugins=_fake_plugins(journal))

    asyncio.run(controller.start_all())

    assert 9123 not in port_table.calls
    assert ("init", "database") not in journal
    assert not controller.registry.is_running(EmulatorKind.DATABASE)
    asyncio.run(controller.clean_shutdown())


def test_only_with_unconfigured_kind_warns_once(
    tmp_path: Path,
    port_table: _PortTable,
    emukit_records: list[logging.LogRecord],
) -> None:
    journal: list[tuple[str, str]] = []
    config = _config({"firestore": {"rules": "firestore.rules"}}, tmp_path)
    (tmp_path / "firestore.rules").write_text("rules_version = '2';", encoding="utf-8")
    controller = EmulatorController(
        config,
        StartOptions(only=["firestore", "pubsub"]),
        plugins=_fake_plugins(journal),
    )

    asyncio.run(controller.start_all())

    pubsub_warnings = [message for message in _warnings(emukit_records) if "pubsub" in message]
    assert len(pubsub_warnings) == 1
    assert ("init", "pubsub") not in journal
    asyncio.run(controller.clean_shutdown())


def test_port_conflict_rolls_back_every_started_emulator(tmp_path: Path, port_table: _PortTable) -> None:
    journal: list[tuple[str, str]] = []
    port_table.occupied.add(5000)
    config = _config({"firestore": {}, "hosting": {}}, tmp_path)
    controller = EmulatorController(config, plugins=_fake_plugins(journal))

    with pytest.raises(PortTakenError, match="port taken") as excinfo:
        asyncio.run(controller.start_all())

    assert excinfo.value.port == 5000
    assert controller.registry.list_running() == []
    assert ("stop", "hub") in journal
    assert ("stop", "firestore") in journal
    assert ("start", "hosting") not in journal


def test_port_conflict_names_the_config_key(
    tmp_path: Path,
    port_table: _PortTable,
    emukit_records: list[logging.LogRecord],
) -> None:
    port_table.occupied.add(8080)
    controller = EmulatorController(_config({"firestore": {}}, tmp_path), plugins=_fake_plugins([]))

    with pytest.raises(PortTakenError):
        asyncio.run(controller.start_all())

    messages = [record.getMessage() for record in emukit_records]
    assert any("Port 8080 is not open" in message for message in messages)
    assert any("emulators.firestore.port" in message for message in messages)


def test_hub_moves_to_next_free_port(
    tmp_path: Path,
    port_table: _PortTable,
    emukit_records: list[logging.LogRecord],
) -> None:
    port_table.occupied.update({4400, 4401})
    controller = EmulatorController(_config({}, tmp_path), plugins=_fake_plugins([]))

    asyncio.run(controller.start_all())

    assert controller.registry.get(EmulatorKind.HUB).get_info().port == 4402
    assert any("starting on 4402" in message for message in _warnings(emukit_records))
    asyncio.run(controller.clean_shutdown())


def test_pubsub_without_project_fails_before_probing_its_port(
    tmp_path: Path,
    port_table: _PortTable,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("GCLOUD_PROJECT", raising=False)
    journal: list[tuple[str, str]] = []
    config = _config({"pubsub": {}, "emulators": {"pubsub": {"port": 8185}}}, tmp_path)
    controller = EmulatorController(config, StartOptions(only=["pubsub"]), plugins=_fake_plugins(journal))

    with pytest.raises(PreconditionError, match="without a project"):
        asyncio.run(controller.start_all())

    assert 8185 not in port_table.calls
    assert ("init", "pubsub") not in journal
    assert controller.registry.list_running() == []


def test_pubsub_uses_project_from_cli(tmp_path: Path, port_table: _PortTable) -> None:
    journal: list[tuple[str, str]] = []
    plugins = _fake_plugins(journal)
    controller = EmulatorController(
        _config({"pubsub": {}}, tmp_path),
        StartOptions(project_id="cli-project"),
        plugins=plugins,
    )

    asyncio.run(controller.start_all())

    pubsub = controller.registry.get(EmulatorKind.PUBSUB)
    assert pubsub.args.project_id == "cli-project"
    asyncio.run(controller.clean_shutdown())


def test_database_receives_functions_address(tmp_path: Path, port_table: _PortTable) -> None:
    config = _config(
        {
            "functions": {"source": "fns"},
            "database": {},
            "emulators": {"functions": {"host": "127.0.0.1", "port": 5101}},
        },
        tmp_path,
    )
    controller = EmulatorController(config, plugins=_fake_plugins([]))

    asyncio.run(controller.start_all())

    database = controller.registry.get(EmulatorKind.DATABASE)
    functions = controller.registry.get(EmulatorKind.FUNCTIONS)
    assert database.args.functions_emulator_host == "127.0.0.1"
    assert database.args.functions_emulator_port == 5101
    assert functions.args.functions_dir == tmp_path.resolve() / "fns"
    asyncio.run(controller.clean_shutdown())


def test_database_without_functions_has_no_functions_address(tmp_path: Path, port_table: _PortTable) -> None:
    controller = EmulatorController(_config({"database": {}}, tmp_path), plugins=_fake_plugins([]))

    asyncio.run(controller.start_all())

    database = controller.registry.get(EmulatorKind.DATABASE)
    assert database.args.functions_emulator_host is None
    assert database.args.functions_emulator_port is None
    asyncio.run(controller.clean_shutdown())


def test_missing_rules_file_starts_without_rules(
    tmp_path: Path,
    port_table: _PortTable,
    emukit_records: list[logging.LogRecord],
) -> None:
    config = _config({"firestore": {"rules": "missing.rules"}, "database": {}}, tmp_path)
    controller = EmulatorController(config, plugins=_fake_plugins([]))

    asyncio.run(controller.start_all())

    assert controller.registry.get(EmulatorKind.FIRESTORE).args.rules is None
    assert controller.registry.get(EmulatorKind.DATABASE).args.rules is None
    warnings = _warnings(emukit_records)
    assert any("missing.rules" in message and "does not exist" in message for message in warnings)
    assert any("No Database rules file specified" in message for message in warnings)
    asyncio.run(controller.clean_shutdown())


def test_existing_rules_file_is_passed_through(tmp_path: Path, port_table: _PortTable) -> None:
    rules = tmp_path / "firestore.rules"
    rules.write_text("rules_version = '2';", encoding="utf-8")
    controller = EmulatorController(
        _config({"firestore": {"rules": "firestore.rules"}}, tmp_path),
        plugins=_fake_plugins([]),
    )

    asyncio.run(controller.start_all())

    assert controller.registry.get(EmulatorKind.FIRESTORE).args.rules == tmp_path.resolve() / "firestore.rules"
    asyncio.run(controller.clean_shutdown())


def test_inspect_functions_passes_debug_port(
    tmp_path: Path,
    port_table: _PortTable,
    emukit_records: list[logging.LogRecord],
) -> None:
    controller = EmulatorController(
        _config({"functions": {}}, tmp_path),
        StartOptions(inspect_functions=9230),
        plugins=_fake_plugins([]),
    )

    asyncio.run(controller.start_all())

    assert controller.registry.get(EmulatorKind.FUNCTIONS).args.debug_port == 9230
    assert any("debug mode (port=9230)" in message for message in _warnings(emukit_records))
    asyncio.run(controller.clean_shutdown())


def test_export_then_import_seeds_firestore(tmp_path: Path, port_table: _PortTable) -> None:
    export_dir = tmp_path / "snapshot"
    journal: list[tuple[str, str]] = []
    plugins = _fake_plugins(
        journal,
        {EmulatorKind.FIRESTORE: fake_emulator_type(EmulatorKind.FIRESTORE, journal, exportable=True)},
    )
    config = _config({"project": "demo-test", "firestore": {}}, tmp_path)

    first = EmulatorController(config, plugins=plugins)
    asyncio.run(first.start_all())
    metadata = asyncio.run(first.export(export_dir))
    asyncio.run(first.clean_shutdown())
    assert metadata.to_dict()["firestore"] == "firestore_export"

    second = EmulatorController(config, StartOptions(import_path=export_dir), plugins=plugins)
    asyncio.run(second.start_all())

    firestore = second.registry.get(EmulatorKind.FIRESTORE)
    expected = export_dir.resolve() / "firestore_export" / "firestore_export.overall_export_metadata"
    assert firestore.args.seed_from_export == expected
    asyncio.run(second.clean_shutdown())


def test_import_without_metadata_file_is_fatal(tmp_path: Path, port_table: _PortTable) -> None:
    journal: list[tuple[str, str]] = []
    controller = EmulatorController(
        _config({"firestore": {}}, tmp_path),
        StartOptions(import_path=tmp_path / "nothing-here"),
        plugins=_fake_plugins(journal),
    )

    with pytest.raises(PreconditionError, match=METADATA_FILE_NAME):
        asyncio.run(controller.start_all())

    assert controller.registry.list_running() == []
    assert ("stop", "hub") in journal
    assert ("init", "firestore") not in journal


def test_import_with_newer_metadata_version_is_rejected(tmp_path: Path, port_table: _PortTable) -> None:
    import_dir = tmp_path / "future"
    import_dir.mkdir()
    (import_dir / METADATA_FILE_NAME).write_text(
        json.dumps({"version": "99.0.0", "firestore": "firestore_export"}),
        encoding="utf-8",
    )
    controller = EmulatorController(
        _config({"firestore": {}}, tmp_path),
        StartOptions(import_path=import_dir),
        plugins=_fake_plugins([]),
    )

    with pytest.raises(ExportMetadataError, match="newer"):
        asyncio.run(controller.start_all())
    assert controller.registry.list_running() == []


def test_import_without_firestore_entry_starts_empty(tmp_path: Path, port_table: _PortTable) -> None:
    import_dir = tmp_path / "empty-export"
    import_dir.mkdir()
    (import_dir / METADATA_FILE_NAME).write_text(json.dumps({"version": "1.0.0"}), encoding="utf-8")
    controller = EmulatorController(
        _config({"firestore": {}}, tmp_path),
        StartOptions(import_path=import_dir),
        plugins=_fake_plugins([]),
    )

    asyncio.run(controller.start_all())

    assert controller.registry.get(EmulatorKind.FIRESTORE).args.seed_from_export is None
    asyncio.run(controller.clean_shutdown())


def test_connect_failure_shuts_everything_down(tmp_path: Path, port_table: _PortTable) -> None:
    journal: list[tuple[str, str]] = []
    plugins = _fake_plugins(
        journal,
        {EmulatorKind.HOSTING: fake_emulator_type(EmulatorKind.HOSTING, journal, fail_connect=True)},
    )
    controller = EmulatorController(_config({"hosting": {}}, tmp_path), plugins=plugins)

    with pytest.raises(TimeoutError):
        asyncio.run(controller.start_all())

    assert controller.registry.list_running() == []
    assert ("stop", "hosting") in journal


def test_clean_shutdown_swallows_stop_errors(
    tmp_path: Path,
    port_table: _PortTable,
    emukit_records: list[logging.LogRecord],
) -> None:
    journal: list[tuple[str, str]] = []
    plugins = _fake_plugins(
        journal,
        {EmulatorKind.FIRESTORE: fake_emulator_type(EmulatorKind.FIRESTORE, journal, fail_stop=True)},
    )
    controller = EmulatorController(_config({"firestore": {}, "hosting": {}}, tmp_path), plugins=plugins)
    asyncio.run(controller.start_all())

    assert asyncio.run(controller.clean_shutdown()) is True
    assert controller.registry.list_running() == []
    assert ("stop", "hub") in journal
    assert any("refused to stop" in message for message in _warnings(emukit_records))
    assert asyncio.run(controller.clean_shutdown()) is True


def test_real_hub_and_hosting_serve_requests(tmp_path: Path) -> None:
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_text("<h1>hello emulators</h1>", encoding="utf-8")
    hub_port = free_port()
    hosting_port = free_port()
    config = _config(
        {
            "hosting": {"public": "public"},
            "emulators": {
                "hub": {"host": "127.0.0.1", "port": hub_port},
                "hosting": {"host": "127.0.0.1", "port": hosting_port},
            },
            "runtime": {"port_wait_timeout_seconds": 10, "hub_port_search_window": 20},
        },
        tmp_path,
    )
    controller = EmulatorController(config)

    async def _scenario() -> tuple[dict[str, Any], str]:
        await controller.start_all()
        try:
            hub = controller.registry.get(EmulatorKind.HUB).get_info()
            with request.urlopen(f"http://{hub.address}/emulators", timeout=5) as response:
                listing = json.loads(response.read().decode("utf-8"))
            with request.urlopen(f"http://127.0.0.1:{hosting_port}/index.html", timeout=5) as response:
                page = response.read().decode("utf-8")
            return listing, page
        finally:
            await controller.clean_shutdown()

    listing, page = asyncio.run(_scenario())
    assert listing["hosting"] == {"name": "hosting", "host": "127.0.0.1", "port": hosting_port}
    assert "hub" in listing
    assert "hello emulators" in page
    assert controller.registry.list_running() == []


def test_hub_export_round_trip_through_controller_registry(tmp_path: Path, port_table: _PortTable) -> None:
    journal: list[tuple[str, str]] = []
    plugins = _fake_plugins(
        journal,
        {EmulatorKind.FIRESTORE: fake_emulator_type(EmulatorKind.FIRESTORE, journal, exportable=True)},
    )
    controller = EmulatorController(_config({"firestore": {}}, tmp_path), plugins=plugins)
    asyncio.run(controller.start_all())

    export_dir = tmp_path / "exports"
    metadata = asyncio.run(HubExport(controller.registry, "demo-test", export_dir).export_all())
    asyncio.run(controller.clean_shutdown())

    written = json.loads((export_dir / METADATA_FILE_NAME).read_text(encoding="utf-8"))
    assert written == metadata.to_dict()
    assert ("export", "firestore") in journal


def test_cancelled_startup_stops_everything_already_running(tmp_path: Path, port_table: _PortTable) -> None:
    journal: list[tuple[str, str]] = []

    class _SlowHosting(fake_emulator_type(EmulatorKind.HOSTING, journal)):
        async def _launch(self) -> None:
            await super()._launch()
            await asyncio.sleep(30)

    controller = EmulatorController(
        _config({"firestore": {}, "hosting": {}}, tmp_path),
        plugins=_fake_plugins(journal, {EmulatorKind.HOSTING: _SlowHosting}),
    )

    async def _scenario() -> None:
        task = asyncio.create_task(controller.start_all())
        while ("start", "hosting") not in journal:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_scenario())

    assert controller.registry.list_running() == []
    assert ("stop", "hub") in journal
    assert ("stop", "firestore") in journal
    assert ("stop", "hosting") in journal
    assert ("connect", "hub") not in journal


def test_cancelled_hub_launch_releases_hub_port(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    class _SlowServer(uvicorn.Server):
        async def startup(self, sockets: Any = None) -> None:
            await asyncio.sleep(0.5)
            await super().startup(sockets=sockets)

    monkeypatch.setattr(uvicorn, "Server", _SlowServer)
    hub_port = free_port()
    controller = EmulatorController(
        _config({"emulators": {"hub": {"host": "127.0.0.1", "port": hub_port}}}, tmp_path),
    )

    async def _scenario() -> None:
        task = asyncio.create_task(controller.start_all())
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_scenario())

    assert controller.registry.list_running() == []
    assert is_port_free(hub_port, "127.0.0.1")


@pytest.mark.parametrize("raw", ["", " , ", None])
def test_empty_only_filter_selects_every_configured_emulator(tmp_path: Path, raw: str | None) -> None:
    assert StartOptions.parse_only(raw) is None
    controller = EmulatorController(
        _config({"firestore": {}, "hosting": {}}, tmp_path),
        StartOptions(only=StartOptions.parse_only(raw)),
    )
    assert controller.targets == (EmulatorKind.HUB, EmulatorKind.FIRESTORE, EmulatorKind.HOSTING)
