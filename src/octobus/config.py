"""Configuration for octobus runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

DEFAULT_COMMAND = "uname -a"


@dataclass
class Defaults:
    """Default values that can be overridden on the command line."""

    user: str = "root"
    password: str = ""
    port: int = 22
    ssh_key: Path = field(default_factory=lambda: Path("~/.ssh/id_rsa").expanduser())
    timeout: int = 30
    backoff: float = 1.0
    reconnect: bool = False
    hosts: str = ""


@dataclass(frozen=True)
class RunConfig:
    """Everything a fleet run needs, fixed once at startup."""

    hosts: str
    command: str = DEFAULT_COMMAND
    user: str = "root"
    password: str = ""
    port: int = 22
    ssh_key: Path = field(default_factory=lambda: Path("~/.ssh/id_rsa").expanduser())
    timeout: int = 30
    backoff: float = 1.0
    reconnect: bool = False
    fail_fast: bool = False
    verbose: bool = False


def load_config(config_path: str | Path) -> Defaults:
    """Load defaults from a YAML file."""
    config_path = Path(config_path).expanduser().resolve()

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return _parse_defaults(raw)


def _parse_hosts(hosts_raw: Any) -> str:
    """Hosts may be given as a list or as a host spec string."""
    if hosts_raw is None:
        return ""
    if isinstance(hosts_raw, str):
        return hosts_raw
    if isinstance(hosts_raw, list):
        return ",".join(str(host) for host in hosts_raw)
    raise ConfigError("'hosts' must be a list or a string")


def _parse_defaults(raw: dict[str, Any]) -> Defaults:
    """Parse the defaults section."""
    defaults_raw = raw.get("defaults") or {}
    if not isinstance(defaults_raw, dict):
        raise ConfigError("'defaults' must be a mapping")

    ssh_key_str = defaults_raw.get("ssh_key", "~/.ssh/id_rsa")
    try:
        return Defaults(
            user=str(defaults_raw.get("user", "root")),
            password=str(defaults_raw.get("password", "")),
            port=int(defaults_raw.get("port", 22)),
            ssh_key=Path(ssh_key_str).expanduser(),
            timeout=int(defaults_raw.get("timeout", 30)),
            backoff=float(defaults_raw.get("backoff", 1.0)),
            reconnect=bool(defaults_raw.get("reconnect", False)),
            hosts=_parse_hosts(raw.get("hosts")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value in defaults: {e}") from e
