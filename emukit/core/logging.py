"""Labelled console logging and structured ECS output."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import json
import logging
from pathlib import Path

from emukit.config.schema import LoggingConfig

_LEVEL_SYMBOLS = {
    logging.DEBUG: "-",
    logging.INFO: "i",
    logging.WARNING: "!",
    logging.ERROR: "x",
    logging.CRITICAL: "x",
}


def _strip_empty(value: object) -> object | None:
    if isinstance(value, dict):
        cleaned = {key: _strip_empty(item) for key, item in value.items()}
        return {key: item for key, item in cleaned.items() if item is not None} or None
    if isinstance(value, list):
        cleaned_list = [_strip_empty(item) for item in value]
        return [item for item in cleaned_list if item is not None] or None
    if value in ("", None):
        return None
    return value


class ECSJsonFormatter(logging.Formatter):
    def __init__(self, service_name: str = "emukit") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, UTC).isoformat(timespec="microseconds")
        payload: dict[str, object] = {
            "@timestamp": timestamp,
            "message": record.getMessage(),
            "log": {
                "level": record.levelname.lower(),
                "logger": record.name,
            },
            "service": {
                "name": getattr(record, "service_name", self.service_name),
            },
            "event": {
                "kind": "event",
                "category": getattr(record, "event_category", "process"),
                "action": getattr(record, "event_action", None),
                "type": getattr(record, "event_type", None),
                "outcome": getattr(record, "event_outcome", None),
            },
            "emukit": {
                "service": getattr(record, "service", None),
                "payload": getattr(record, "payload", None),
            },
        }
        if record.exc_info:
            payload["error"] = {"stack_trace": self.formatException(record.exc_info)}
        cleaned = _strip_empty(payload) or {}
        return json.dumps(cleaned, separators=(",", ":"))


class LabelFormatter(logging.Formatter):
    """Render ``<symbol>  <label>: <message>`` lines for terminals."""

    def __init__(self, default_label: str = "emulators") -> None:
        super().__init__()
        self.default_label = default_label

    def format(self, record: logging.LogRecord) -> str:
        symbol = _LEVEL_SYMBOLS.get(record.levelno, "i")
        label = getattr(record, "service", None) or self.default_label
        line = f"{symbol}  {label}: {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _formatter(config: LoggingConfig) -> logging.Formatter:
    if config.fmt == "ecs_json":
        return ECSJsonFormatter(service_name=config.service_name)
    return LabelFormatter()


def _sink_handler(config: LoggingConfig, formatter: logging.Formatter) -> logging.Handler:
    if config.sink == "file":
        file_path = config.file_path or "logs/emukit.log"
        log_file = Path(file_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    return handler


def configure_logging(config: LoggingConfig, force: bool = False) -> None:
    root = logging.getLogger("emukit")
    if getattr(root, "_emukit_configured", False) and not force:
        return

    root.setLevel(config.level)
    for existing in list(root.handlers):
        existing.close()
    root.handlers.clear()
    root.addHandler(_sink_handler(config, _formatter(config)))
    root.propagate = False
    setattr(root, "_emukit_configured", True)


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if name.startswith("emukit"):
        parent = logging.getLogger("emukit")
        if parent.handlers:
            logger.setLevel(logging.NOTSET)
            logger.propagate = True
            return logger

    handler = logging.StreamHandler()
    handler.setFormatter(LabelFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def emit_metric(
    logger: logging.Logger,
    *,
    name: str,
    value: float,
    service: str = "emulators",
    payload: dict[str, object] | None = None,
    level: str = "DEBUG",
) -> None:
    metric_name = name.strip() or "metric"
    metric_value = float(value)
    metric_payload: dict[str, object] = {"metric_name": metric_name, "metric_value": metric_value}
    if payload:
        metric_payload.update(payload)
    logger.log(
        getattr(logging, level.upper(), logging.DEBUG),
        f"metric:{metric_name}",
        extra={
            "service": service,
            "event_action": metric_name,
            "event_category": "metric",
            "event_type": "info",
            "event_outcome": "success",
            "payload": metric_payload,
        },
    )


@dataclass(slots=True)
class EventLogger:
    logger: logging.Logger
    service_name: str

    def emit(
        self,
        *,
        message: str,
        service: str,
        action: str,
        outcome: str | None = None,
        event_type: str | None = None,
        payload: dict[str, object] | None = None,
        level: str = "DEBUG",
    ) -> None:
        self.logger.log(
            getattr(logging, level.upper(), logging.DEBUG),
            message,
            extra={
                "service_name": self.service_name,
                "service": service,
                "event_action": action,
                "event_category": "process",
                "event_type": event_type,
                "event_outcome": outcome,
                "payload": payload or {},
            },
        )
