"""Host list resolution and parsing."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlsplit

from .errors import ConfigError, ParseError

DEFAULT_PORT = 22


@dataclass(frozen=True)
class HostTarget:
    """A single resolved remote endpoint."""

    host: str
    port: int = DEFAULT_PORT
    user: str = ""
    password: str = ""
    network: str = "tcp"
    raw: str = ""

    @property
    def address(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"

    @property
    def label(self) -> str:
        return f"{self.user}@{self.address}" if self.user else self.address


@dataclass(frozen=True)
class Credentials:
    """Authentication material shared read-only by every session."""

    keys: tuple[Any, ...] = ()
    password: str = ""

    def auth_methods(self, target: HostTarget) -> list[str]:
        """Return auth methods to try, in order, for ``target``."""
        methods = []
        if target.password or self.password:
            methods.append("password")
        if self.keys:
            methods.append("publickey")
        return methods


def read_host_spec(spec: str) -> list[str]:
    """Expand a host spec into raw host strings.

    ``spec`` is either a comma-separated list or ``@path`` naming a file with
    one host per line. Order and duplicates are preserved, blank entries are
    dropped.
    """
    if spec.startswith("@"):
        path = Path(spec[1:]).expanduser()
        try:
            text = path.read_text()
        except OSError as e:
            raise ConfigError(f"cannot read hosts file {path}: {e.strerror or e}") from e
        entries = text.splitlines()
    else:
        entries = spec.split(",")

    return [entry.strip() for entry in entries if entry.strip()]


def parse_host(
    raw: str,
    default_user: str = "",
    default_password: str = "",
    default_port: int = DEFAULT_PORT,
) -> HostTarget:
    """Parse ``[user[:pass]@]host[:port]`` into a HostTarget."""
    text = raw.strip()
    if not text:
        raise ParseError("empty host entry")
    if "://" not in text:
        text = f"ssh://{text}"

    try:
        parsed = urlsplit(text)
        port = parsed.port
    except ValueError as e:
        raise ParseError(f"invalid host {raw!r}: {e}") from e

    if parsed.scheme != "ssh":
        raise ParseError(f"invalid host {raw!r}: unsupported scheme {parsed.scheme!r}")
    if not parsed.hostname:
        raise ParseError(f"invalid host {raw!r}: missing host name")
    if parsed.path or parsed.query or parsed.fragment:
        raise ParseError(f"invalid host {raw!r}: unexpected trailing data")

    return HostTarget(
        host=parsed.hostname,
        port=port if port is not None else default_port,
        user=unquote(parsed.username) if parsed.username else default_user,
        password=unquote(parsed.password) if parsed.password else default_password,
        raw=raw,
    )


def resolve_hosts(
    spec: str,
    default_user: str = "",
    default_password: str = "",
    default_port: int = DEFAULT_PORT,
) -> list[HostTarget]:
    """Read and parse every host in ``spec``, failing on the first bad entry."""
    return [
        parse_host(raw, default_user, default_password, default_port)
        for raw in read_host_spec(spec)
    ]
