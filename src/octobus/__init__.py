"""octobus: run a command on many SSH hosts concurrently."""

from .config import Defaults, RunConfig, load_config
from .errors import (
    AuthError,
    ConfigError,
    OctobusError,
    ParseError,
    RemoteExecError,
    TemplateError,
    TransportError,
)
from .executor import SessionAttempt, SessionExecutor, SessionStatus
from .fleet import Fleet
from .hosts import Credentials, HostTarget, parse_host, read_host_spec, resolve_hosts
from .sink import LineSink, OutputSink, StreamKind, StreamSink
from .template import render_command, tail_command
from .transport import AsyncSSHTransport, load_private_key

__all__ = [
    "AsyncSSHTransport",
    "AuthError",
    "ConfigError",
    "Credentials",
    "Defaults",
    "Fleet",
    "HostTarget",
    "LineSink",
    "OctobusError",
    "OutputSink",
    "ParseError",
    "RemoteExecError",
    "RunConfig",
    "SessionAttempt",
    "SessionExecutor",
    "SessionStatus",
    "StreamKind",
    "StreamSink",
    "TemplateError",
    "TransportError",
    "load_config",
    "load_private_key",
    "parse_host",
    "read_host_spec",
    "render_command",
    "resolve_hosts",
    "tail_command",
]
