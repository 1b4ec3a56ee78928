"""Project configuration view and ambient settings."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any


_MISSING = object()


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    fmt: str = "text"
    sink: str = "stdout"
    file_path: str | None = None
    service_name: str = "emukit"


@dataclass(slots=True)
class RuntimeConfig:
    port_poll_interval_seconds: float = 0.25
    port_wait_timeout_seconds: float = 30.0
    hub_port_search_window: int = 100
    stop_timeout_seconds: float = 10.0


@dataclass(slots=True)
class AppSettings:
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)


@dataclass(slots=True)
class ProjectConfig:
    """Read-only view over a project configuration document.

    Keys are dotted paths into the parsed document, e.g. ``firestore.rules`` or
    ``emulators.hub.port``.
    """

    data: dict[str, Any]
    project_dir: Path
    settings: AppSettings = field(default_factory=AppSettings)
    path: Path | None = None

    def has(self, key: str) -> bool:
        return self._lookup(key) is not _MISSING

    def get(self, key: str, default: Any = None) -> Any:
        value = self._lookup(key)
        return default if value is _MISSING else value

    @property
    def project_id(self) -> str | None:
        candidate = self.get("project") or os.environ.get("GCLOUD_PROJECT")
        if candidate is None:
            return None
        normalized = str(candidate).strip()
        return normalized or None

    def resolve_path(self, relative: str) -> Path:
        candidate = Path(relative).expanduser()
        if candidate.is_absolute():
            return candidate
        return self.project_dir / candidate

    def _lookup(self, key: str) -> Any:
        node: Any = self.data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return _MISSING
            node = node[part]
        return node


VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
VALID_LOG_FORMATS = {"text", "ecs_json"}
VALID_LOG_SINKS = {"stdout", "file"}


def _parse_positive_float(raw: Any, *, field_name: str, default: float) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' must be a number") from exc
    if value <= 0:
        raise ValueError(f"'{field_name}' must be greater than zero")
    return value


def _parse_logging(raw: Any) -> LoggingConfig:
    if raw is None:
        return LoggingConfig()
    if not isinstance(raw, dict):
        raise ValueError("'logging' must be an object")
    level = str(raw.get("level", "INFO")).upper()
    if level not in VALID_LOG_LEVELS:
        raise ValueError(f"invalid log level '{level}'")
    fmt = str(raw.get("format", raw.get("fmt", "text"))).lower()
    if fmt not in VALID_LOG_FORMATS:
        raise ValueError(f"invalid log format '{fmt}'")
    sink = str(raw.get("sink", "stdout")).lower()
    if sink not in VALID_LOG_SINKS:
        raise ValueError(f"invalid log sink '{sink}'")
    file_path = raw.get("file_path")
    if sink == "file" and not file_path:
        raise ValueError("'logging.file_path' is required when logging.sink is 'file'")
    return LoggingConfig(
        level=level,
        fmt=fmt,
        sink=sink,
        file_path=str(file_path) if file_path else None,
        service_name=str(raw.get("service_name", "emukit")).strip() or "emukit",
    )


def _parse_runtime(raw: Any) -> RuntimeConfig:
    if raw is None:
        return RuntimeConfig()
    if not isinstance(raw, dict):
        raise ValueError("'runtime' must be an object")
    window_raw = raw.get("hub_port_search_window", 100)
    try:
        window = int(window_raw)
    except (TypeError, ValueError) as exc:
        raise ValueError("'runtime.hub_port_search_window' must be an integer") from exc
    if window < 0:
        raise ValueError("'runtime.hub_port_search_window' must not be negative")
    return RuntimeConfig(
        port_poll_interval_seconds=_parse_positive_float(
            raw.get("port_poll_interval_seconds"),
            field_name="runtime.port_poll_interval_seconds",
            default=0.25,
        ),
        port_wait_timeout_seconds=_parse_positive_float(
            raw.get("port_wait_timeout_seconds"),
            field_name="runtime.port_wait_timeout_seconds",
            default=30.0,
        ),
        hub_port_search_window=window,
        stop_timeout_seconds=_parse_positive_float(
            raw.get("stop_timeout_seconds"),
            field_name="runtime.stop_timeout_seconds",
            default=10.0,
        ),
    )


def _validate_emulators_block(raw: Any) -> None:
    if raw is None:
        return
    if not isinstance(raw, dict):
        raise ValueError("'emulators' must be an object")
    for name, item in raw.items():
        if item is None:
            continue
        if not isinstance(item, dict):
            raise ValueError(f"'emulators.{name}' must be an object")
        if "port" in item:
            try:
                port = int(item["port"])
            except (TypeError, ValueError) as exc:
                raise ValueError(f"'emulators.{name}.port' must be an integer") from exc
            if port < 1 or port > 65535:
                raise ValueError(f"'emulators.{name}.port' must be between 1 and 65535")
        if "host" in item and not str(item["host"]).strip():
            raise ValueError(f"'emulators.{name}.host' must not be empty")
        command = item.get("command")
        if command is not None and not isinstance(command, (str, list)):
            raise ValueError(f"'emulators.{name}.command' must be a string or a list")


def parse_config(data: dict[str, Any], *, project_dir: Path | None = None, path: Path | None = None) -> ProjectConfig:
    if not isinstance(data, dict):
        raise ValueError("project config must be an object")
    _validate_emulators_block(data.get("emulators"))
    settings = AppSettings(
        logging=_parse_logging(data.get("logging")),
        runtime=_parse_runtime(data.get("runtime")),
    )
    return ProjectConfig(
        data=data,
        project_dir=(project_dir or Path.cwd()).resolve(),
        settings=settings,
        path=path,
    )
