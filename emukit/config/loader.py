"""Project config loading and the starter config written by ``emukit init``."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

from emukit.config.schema import ProjectConfig, parse_config


DEFAULT_CONFIG_PATH = Path(__file__).with_name("defaults.yml")
_ENV_TOKEN_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")
_PROJECT_LINE_RE = re.compile(r"^project:.*$", re.MULTILINE)


def load_config(path: Path) -> ProjectConfig:
    """Read a project config, expanding ``${VAR}`` and ``${VAR:-default}`` tokens.

    Relative paths inside the document resolve against the config file's
    directory.
    """
    if not path.exists():
        raise FileNotFoundError(f"config file does not exist: {path}")
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"config file must contain an object: {path}")
    expanded = {key: _expand(value, str(key)) for key, value in raw.items()}
    return parse_config(expanded, project_dir=path.resolve().parent, path=path)


def initialize_config(path: Path, force: bool = False, project_id: str | None = None) -> Path:
    if path.exists() and not force:
        raise FileExistsError(f"config already exists: {path}")
    template = DEFAULT_CONFIG_PATH.read_text(encoding="utf-8")
    if project_id and project_id.strip():
        template = _PROJECT_LINE_RE.sub(f"project: {project_id.strip()}", template, count=1)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(template, encoding="utf-8")
    return path


def _expand(value: Any, key_path: str) -> Any:
    if isinstance(value, dict):
        return {key: _expand(item, f"{key_path}.{key}") for key, item in value.items()}
    if isinstance(value, list):
        return [_expand(item, f"{key_path}[{index}]") for index, item in enumerate(value)]
    if not isinstance(value, str) or "${" not in value:
        return value

    expanded = _ENV_TOKEN_RE.sub(lambda match: _resolve_token(match, key_path), value)
    # `port: ${HUB_PORT:-4400}` should read back as the number YAML would have given.
    if key_path.endswith(".port") and expanded.strip().isdigit():
        return int(expanded)
    return expanded


def _resolve_token(match: re.Match[str], key_path: str) -> str:
    name, default = match.group(1), match.group(2)
    resolved = os.environ.get(name)
    if resolved is not None:
        return resolved
    if default is not None:
        return default
    raise ValueError(f"config key '{key_path}' references unset environment variable '{name}'")
