"""Emulator selection, ordered startup and shutdown for one session."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from emukit.config.schema import ProjectConfig
from emukit.core.constants import CLIENT_ENV_VARS, get_address, get_command
from emukit.core.errors import PortTakenError, PreconditionError
from emukit.core.export import ExportMetadata, HubExport, load_export_metadata, seed_path_for
from emukit.core.logging import emit_metric, get_logger
from emukit.core.plugin import PluginRegistry
from emukit.core.ports import find_available_port, is_port_free
from emukit.core.registry import EmulatorRegistry
from emukit.services.base import SERVICE_EMULATORS, EmulatorInfo, EmulatorKind, ServiceEmulator
from emukit.services.database.emulator import DatabaseArgs
from emukit.services.firestore.emulator import FirestoreArgs
from emukit.services.functions.emulator import FunctionsArgs
from emukit.services.hosting.emulator import HostingArgs
from emukit.services.hub.emulator import HubArgs
from emukit.services.pubsub.emulator import PubsubArgs


@dataclass(slots=True)
class StartOptions:
    only: list[str] | None = None
    project_id: str | None = None
    import_path: Path | None = None
    inspect_functions: int | None = None

    @staticmethod
    def parse_only(raw: str | None) -> list[str] | None:
        if raw is None:
            return None
        names = [item.strip() for item in raw.split(",") if item.strip()]
        return names or None


@dataclass(frozen=True, slots=True)
class StartupStep:
    kind: EmulatorKind
    build_args: Callable[[EmulatorInfo], Any]
    precondition: Callable[[], None] | None = None


@dataclass(slots=True)
class _ImportState:
    path: Path | None = None
    metadata: ExportMetadata = field(default_factory=lambda: ExportMetadata(version="unknown"))


def filter_emulator_targets(config: ProjectConfig, only: list[str] | None = None) -> list[EmulatorKind]:
    targets = [
        kind
        for kind in SERVICE_EMULATORS
        if config.has(kind.value) or config.has(f"emulators.{kind.value}")
    ]
    if only is not None:
        requested = set(only)
        targets = [kind for kind in targets if kind.value in requested]
    return targets


class EmulatorController:
    """Lifecycle context for one invocation.

    Owns the registry and every emulator it starts. The target set is fixed at
    construction time.
    """

    def __init__(
        self,
        config: ProjectConfig,
        options: StartOptions | None = None,
        *,
        plugins: PluginRegistry | None = None,
        registry: EmulatorRegistry | None = None,
    ) -> None:
        self.config = config
        self.options = options or StartOptions()
        self.plugins = plugins or PluginRegistry()
        self.registry = registry or EmulatorRegistry()
        self.logger = get_logger("emukit.controller", level=config.settings.logging.level)
        self.targets: tuple[EmulatorKind, ...] = (
            EmulatorKind.HUB,
            *filter_emulator_targets(config, self.options.only),
        )
        self._import = _ImportState()

    @property
    def project_id(self) -> str | None:
        if self.options.project_id and self.options.project_id.strip():
            return self.options.project_id.strip()
        return self.config.project_id

    def should_start(self, kind: EmulatorKind) -> bool:
        return kind in self.targets

    def ignored_requests(self) -> list[str]:
        if self.options.only is None:
            return []
        selected = {kind.value for kind in self.targets}
        ignored: list[str] = []
        for name in self.options.only:
            if name not in selected and name not in ignored:
                ignored.append(name)
        return ignored

    def startup_plan(self) -> list[StartupStep]:
        return [
            StartupStep(EmulatorKind.FUNCTIONS, self._functions_args),
            StartupStep(EmulatorKind.FIRESTORE, self._firestore_args),
            StartupStep(EmulatorKind.DATABASE, self._database_args),
            StartupStep(EmulatorKind.HOSTING, self._hosting_args),
            StartupStep(EmulatorKind.PUBSUB, self._pubsub_args, precondition=self._require_project),
        ]

    async def start_all(self) -> None:
        try:
            await self._start_all()
        except BaseException:
            await self.clean_shutdown()
            raise

    async def _start_all(self) -> None:
        service_targets = [kind.value for kind in self.targets if kind is not EmulatorKind.HUB]
        self._log(f"Starting emulators: {', '.join(service_targets) or '(hub only)'}")
        for name in self.ignored_requests():
            self._log(
                f"Not starting the {name} emulator, make sure it is configured in {self._config_name()}.",
                level="warning",
            )

        await self._start_hub()

        if self.options.import_path is not None:
            import_dir = self.options.import_path.expanduser().resolve()
            self._import = _ImportState(path=import_dir, metadata=load_export_metadata(import_dir))

        for step in self.startup_plan():
            if not self.should_start(step.kind):
                continue
            if step.precondition is not None:
                step.precondition()
            info = get_address(self.config, step.kind)
            args = step.build_args(info)
            await self.start_emulator(self.plugins.instantiate(step.kind, args))
            env_var = CLIENT_ENV_VARS.get(step.kind)
            if env_var:
                self._log(f"For testing set {env_var}={info.address}", service=step.kind.value)

        for kind in self.registry.list_running():
            instance = self.registry.get(kind)
            if instance is not None:
                await instance.connect()

    async def _start_hub(self) -> None:
        configured = get_address(self.config, EmulatorKind.HUB)
        port = find_available_port(
            configured.port,
            configured.host,
            self.config.settings.runtime.hub_port_search_window,
        )
        if port != configured.port:
            self._log(
                f"Emulator hub unable to start on port {configured.port}, starting on {port}",
                level="warning",
            )
        args = HubArgs(
            info=EmulatorInfo(kind=EmulatorKind.HUB, host=configured.host, port=port),
            registry=self.registry,
            project_id=self.project_id,
            runtime=self.config.settings.runtime,
        )
        await self.start_emulator(self.plugins.instantiate(EmulatorKind.HUB, args))

    async def start_emulator(self, instance: ServiceEmulator) -> None:
        info = instance.get_info()
        emit_metric(self.logger, name="emulators_start", value=1, payload={"emulator": instance.name})
        if not is_port_free(info.port, info.host):
            await self.clean_shutdown()
            self._log(
                f"Port {info.port} is not open on {info.host}, could not start {info.kind.description}.",
                level="warning",
            )
            self._log(
                f"To select a different port for the emulator, set 'emulators.{instance.name}.port' "
                f"in {self._config_name()}.",
            )
            raise PortTakenError(instance.name, info.host, info.port)
        await self.registry.start(instance)

    async def clean_shutdown(self) -> bool:
        running = self.registry.list_running()
        if not running:
            return True
        self._log("Shutting down emulators.")
        # Reverse registration order: dependents stop before what they rely on.
        for kind in reversed(running):
            self._log(f"Stopping {kind.description}")
            try:
                await self.registry.stop(kind)
            except Exception as exc:
                self._log(f"Error while stopping the {kind.description}: {exc}", level="warning")
        return True

    async def export(self, export_path: Path) -> ExportMetadata:
        exporter = HubExport(self.registry, self.project_id, export_path.expanduser().resolve())
        return await exporter.export_all()

    def _require_project(self) -> None:
        if not self.project_id:
            raise PreconditionError(
                "Cannot start the Pub/Sub emulator without a project: set 'project' in "
                f"{self._config_name()} or provide the --project flag"
            )

    def _functions_args(self, info: EmulatorInfo) -> FunctionsArgs:
        source = str(self.config.get("functions.source") or "functions")
        debug_port = self.options.inspect_functions
        if debug_port is not None:
            self._log(
                f"You are running the functions emulator in debug mode (port={debug_port}). "
                "This means that functions will execute in sequence rather than in parallel.",
                level="warning",
                service="functions",
            )
        return FunctionsArgs(
            info=info,
            command=get_command(self.config, EmulatorKind.FUNCTIONS),
            working_dir=self.config.project_dir,
            runtime=self.config.settings.runtime,
            functions_dir=self.config.resolve_path(source),
            project_id=self.project_id,
            debug_port=debug_port,
        )

    def _firestore_args(self, info: EmulatorInfo) -> FirestoreArgs:
        return FirestoreArgs(
            info=info,
            command=get_command(self.config, EmulatorKind.FIRESTORE),
            working_dir=self.config.project_dir,
            runtime=self.config.settings.runtime,
            project_id=self.project_id,
            rules=self._rules_path(EmulatorKind.FIRESTORE, "Firestore"),
            seed_from_export=self._seed_path(EmulatorKind.FIRESTORE),
        )

    def _database_args(self, info: EmulatorInfo) -> DatabaseArgs:
        args = DatabaseArgs(
            info=info,
            command=get_command(self.config, EmulatorKind.DATABASE),
            working_dir=self.config.project_dir,
            runtime=self.config.settings.runtime,
            project_id=self.project_id,
            rules=self._rules_path(EmulatorKind.DATABASE, "Database"),
            seed_from_export=self._seed_path(EmulatorKind.DATABASE),
        )
        if self.should_start(EmulatorKind.FUNCTIONS):
            functions = get_address(self.config, EmulatorKind.FUNCTIONS)
            args.functions_emulator_host = functions.host
            args.functions_emulator_port = functions.port
        return args

    def _hosting_args(self, info: EmulatorInfo) -> HostingArgs:
        public = str(self.config.get("hosting.public") or "public")
        public_dir = self.config.resolve_path(public)
        if not public_dir.is_dir():
            self._log(
                f"Hosting public directory {public_dir} does not exist, requests will return 404.",
                level="warning",
                service="hosting",
            )
        return HostingArgs(info=info, public_dir=public_dir)

    def _pubsub_args(self, info: EmulatorInfo) -> PubsubArgs:
        return PubsubArgs(
            info=info,
            command=get_command(self.config, EmulatorKind.PUBSUB),
            working_dir=self.config.project_dir,
            runtime=self.config.settings.runtime,
            project_id=self.project_id or "",
        )

    def _rules_path(self, kind: EmulatorKind, label: str) -> Path | None:
        configured = self.config.get(f"{kind.value}.rules")
        if not configured:
            self._log(
                f"No {label} rules file specified in {self._config_name()}, using default rules.",
                level="warning",
                service=kind.value,
            )
            return None
        rules = self.config.resolve_path(str(configured))
        if not rules.exists():
            self._log(
                f"{label} rules file {rules} specified in {self._config_name()} does not exist, "
                f"starting {label} emulator without rules.",
                level="warning",
                service=kind.value,
            )
            return None
        return rules

    def _seed_path(self, kind: EmulatorKind) -> Path | None:
        if self._import.path is None:
            return None
        seed = seed_path_for(kind, self._import.path, self._import.metadata)
        if seed is not None:
            self._log(f"Importing data from {seed}", service=kind.value)
        return seed

    def _config_name(self) -> str:
        return self.config.path.name if self.config.path else "the project config"

    def _log(self, message: str, *, level: str = "info", service: str = "emulators") -> None:
        getattr(self.logger, level)(message, extra={"service": service})
