"""TOML-based pool configuration.

Loads ~/.dropcloud/defaults.toml (global) and dropcloud.toml (project),
merges them, and resolves named clouds into validated ``CloudConfig``
instances:

    [clouds.do1]
    token_env = "DIGITALOCEAN_TOKEN"
    private_key_path = "~/.ssh/id_rsa"
    ssh_key_id = 123
    instance_cap = 4

    [[clouds.do1.templates]]
    name = "small"
    image = "ubuntu-22-04-x64"
    size = "s-1vcpu-1gb"
    region = "nyc3"
    labels = "linux docker"
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from dropcloud.exceptions import ConfigurationError
from dropcloud.ssh import is_private_key
from dropcloud.types import CloudConfig, SlaveTemplate

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".dropcloud" / "defaults.toml"
PROJECT_CONFIG_NAME = "dropcloud.toml"
DEFAULT_TOKEN_ENV = "DIGITALOCEAN_TOKEN"

_CLOUD_INT_FIELDS = ("ssh_key_id", "instance_cap", "timeout_minutes", "connection_retry_wait")
_TEMPLATE_INT_FIELDS = ("ssh_port", "num_executors", "idle_termination_minutes", "instance_cap")
_TEMPLATE_FIELDS = frozenset(SlaveTemplate.__dataclass_fields__)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("clouds", {})
    return merged


def _as_int(where: str, key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{where}: '{key}' must be a number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ConfigurationError(f"{where}: '{key}' must be a number, got {value!r}")


def _coerce_ints(where: str, raw: RawConfig, keys: tuple[str, ...]) -> None:
    for key in keys:
        if key in raw:
            raw[key] = _as_int(where, key, raw[key])


def _resolve_token(name: str, raw: RawConfig) -> str:
    token = raw.pop("token", None)
    token_env = raw.pop("token_env", None)
    if token:
        return str(token)
    env = token_env or DEFAULT_TOKEN_ENV
    value = os.environ.get(env)
    if not value:
        raise ConfigurationError(f"Cloud '{name}': no token configured and ${env} is not set")
    return value


def _resolve_private_key(name: str, raw: RawConfig) -> str:
    key = raw.pop("private_key", None)
    key_path = raw.pop("private_key_path", None)
    if not key and key_path:
        path = Path(key_path).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Cloud '{name}': private key file {path} not found")
        key = path.read_text()
    if not key:
        raise ConfigurationError(f"Cloud '{name}': 'private_key' or 'private_key_path' is required")
    if not is_private_key(key):
        raise ConfigurationError(f"Cloud '{name}': must be a valid private key")
    return key


def _build_template(cloud: str, raw: RawConfig) -> SlaveTemplate:
    raw = dict(raw)
    where = f"Cloud '{cloud}' template '{raw.get('name', '?')}'"
    unknown = set(raw) - _TEMPLATE_FIELDS
    if unknown:
        raise ConfigurationError(f"{where}: unknown keys {sorted(unknown)}")
    for required in ("name", "image", "size", "region"):
        if not raw.get(required):
            raise ConfigurationError(f"{where}: '{required}' is required")
    _coerce_ints(where, raw, _TEMPLATE_INT_FIELDS)
    raw["image"] = str(raw["image"])
    return SlaveTemplate(**raw)


def build_cloud(name: str, raw: RawConfig) -> CloudConfig:
    """Validate one ``[clouds.<name>]`` table."""
    raw = dict(raw)
    token = _resolve_token(name, raw)
    private_key = _resolve_private_key(name, raw)
    templates = tuple(_build_template(name, t) for t in raw.pop("templates", []))
    _coerce_ints(f"Cloud '{name}'", raw, _CLOUD_INT_FIELDS)
    try:
        return CloudConfig(name=name, token=token, private_key=private_key, templates=templates, **raw)
    except TypeError as e:
        raise ConfigurationError(f"Cloud '{name}': {e}") from e


def resolve_cloud(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> CloudConfig:
    config = load_config(project_dir=project_dir, global_path=global_path)
    clouds = config["clouds"]
    if name not in clouds:
        raise KeyError(f"Cloud '{name}' not found. Available: {', '.join(clouds) or 'none'}")
    return build_cloud(name, clouds[name])


def resolve_clouds(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> dict[str, CloudConfig]:
    config = load_config(project_dir=project_dir, global_path=global_path)
    return {name: build_cloud(name, raw) for name, raw in config["clouds"].items()}


__all__ = [
    "GLOBAL_CONFIG_PATH",
    "PROJECT_CONFIG_NAME",
    "build_cloud",
    "load_config",
    "resolve_cloud",
    "resolve_clouds",
]
