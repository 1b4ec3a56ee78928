"""CLI entry point for emukit."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Sequence
from urllib import error, request

from emukit.config.loader import initialize_config, load_config
from emukit.core.constants import DEFAULT_INSPECT_PORT, get_address
from emukit.core.controller import EmulatorController, StartOptions
from emukit.core.errors import EmulatorError
from emukit.core.logging import configure_logging, get_logger
from emukit.services.base import EmulatorKind
from emukit.services.hub.locator import read_locator


DEFAULT_CONFIG = Path("./emukit.yml")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="emukit")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create starter project config")
    init_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    init_parser.add_argument("--force", action="store_true")
    init_parser.add_argument("--project", type=str, default=None, help="Project id written into the starter config")

    start_parser = subparsers.add_parser("start", help="Start the configured emulators")
    start_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    start_parser.add_argument(
        "--only",
        type=str,
        default=None,
        help="Comma separated emulators to start, e.g. firestore,hosting",
    )
    start_parser.add_argument("--project", type=str, default=None)
    start_parser.add_argument(
        "--import",
        dest="import_path",
        type=Path,
        default=None,
        help="Directory holding a previous export to seed emulators from",
    )
    start_parser.add_argument(
        "--inspect-functions",
        type=int,
        nargs="?",
        const=DEFAULT_INSPECT_PORT,
        default=None,
        help="Run functions in debug mode, optionally on the given inspector port",
    )
    start_parser.add_argument(
        "--once",
        action="store_true",
        help="Start emulators, print the running set, then stop immediately",
    )

    targets_parser = subparsers.add_parser("targets", help="Show which emulators would start")
    targets_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    targets_parser.add_argument("--only", type=str, default=None)

    export_parser = subparsers.add_parser("export", help="Export data from running emulators through the hub")
    export_parser.add_argument("path", type=Path)
    export_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    export_parser.add_argument("--hub-host", type=str, default=None)
    export_parser.add_argument("--hub-port", type=int, default=None)
    export_parser.add_argument("--project", type=str, default=None)
    export_parser.add_argument("--timeout", type=float, default=120.0)

    return parser


def cmd_init(config_path: Path, force: bool, project: str | None = None) -> int:
    initialize_config(config_path, force=force, project_id=project)
    print(f"wrote config: {config_path}")
    return 0


async def _run_session(controller: EmulatorController, *, once: bool) -> None:
    try:
        await controller.start_all()
        print(json.dumps(controller.registry.snapshot(), indent=2))
        if once:
            return
        controller.logger.info("All emulators started, it is now safe to connect.", extra={"service": "emulators"})
        while True:
            await asyncio.sleep(1)
    finally:
        await controller.clean_shutdown()


def cmd_start(
    config_path: Path,
    *,
    only: str | None = None,
    project: str | None = None,
    import_path: Path | None = None,
    inspect_functions: int | None = None,
    once: bool = False,
) -> int:
    config = load_config(config_path)
    configure_logging(config.settings.logging)
    options = StartOptions(
        only=StartOptions.parse_only(only),
        project_id=project,
        import_path=import_path,
        inspect_functions=inspect_functions,
    )
    controller = EmulatorController(config, options)
    try:
        asyncio.run(_run_session(controller, once=once))
    except KeyboardInterrupt:
        return 0
    return 0


def cmd_targets(config_path: Path, *, only: str | None = None) -> int:
    config = load_config(config_path)
    controller = EmulatorController(config, StartOptions(only=StartOptions.parse_only(only)))
    payload = {
        "targets": [kind.value for kind in controller.targets],
        "ignored": controller.ignored_requests(),
        "addresses": {
            kind.value: get_address(config, kind).address for kind in controller.targets
        },
    }
    print(json.dumps(payload, indent=2))
    return 0


def _post_json(url: str, body: dict[str, Any], timeout: float) -> dict[str, Any]:
    req = request.Request(
        url,
        data=json.dumps(body).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    with request.urlopen(req, timeout=timeout) as response:
        return json.loads(response.read().decode("utf-8") or "{}")


def cmd_export(
    export_path: Path,
    config_path: Path,
    *,
    hub_host: str | None = None,
    hub_port: int | None = None,
    project: str | None = None,
    timeout: float = 120.0,
) -> int:
    config = load_config(config_path)
    configure_logging(config.settings.logging)
    logger = get_logger("emukit.cli")
    hub = read_locator(project or config.project_id) or get_address(config, EmulatorKind.HUB)
    host = hub_host or hub.host
    port = hub_port or hub.port
    target = export_path.expanduser().resolve()
    url = f"http://{host}:{port}/_admin/export"
    logger.info(f"Exporting data to: {target}", extra={"service": "emulators"})
    try:
        result = _post_json(url, {"path": str(target)}, timeout)
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        try:
            detail = str(json.loads(detail).get("detail", detail))
        except (json.JSONDecodeError, AttributeError):
            pass
        raise EmulatorError(f"Export failed: {detail}") from exc
    except (error.URLError, OSError) as exc:
        raise EmulatorError(
            f"Did not find a running emulator hub at {host}:{port}: {exc}. "
            "If the hub started on another port, pass --hub-port."
        ) from exc
    print(json.dumps(result, indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "init":
            return cmd_init(args.config, args.force, args.project)
        if args.command == "start":
            return cmd_start(
                args.config,
                only=args.only,
                project=args.project,
                import_path=args.import_path,
                inspect_functions=args.inspect_functions,
                once=args.once,
            )
        if args.command == "targets":
            return cmd_targets(args.config, only=args.only)
        if args.command == "export":
            return cmd_export(
                args.path,
                args.config,
                hub_host=args.hub_host,
                hub_port=args.hub_port,
                project=args.project,
                timeout=args.timeout,
            )
    except (EmulatorError, FileNotFoundError, FileExistsError, ValueError) as exc:
        get_logger("emukit.cli").error(str(exc), extra={"service": "emulators"})
        return 1

    parser.error(f"unknown command: {args.command}")
    return 2
