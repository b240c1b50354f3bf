"""Error types raised by octobus."""

from __future__ import annotations


class OctobusError(Exception):
    """Base class for all octobus errors."""

    kind = "error"
    retryable = False


class ConfigError(OctobusError):
    """Bad hosts file, config file or private key. Fatal for the whole run."""

    kind = "config"


class ParseError(OctobusError):
    """Malformed host entry or command template. Fatal for one host."""

    kind = "parse"


class TemplateError(ParseError):
    kind = "template"


class TransportError(OctobusError):
    """Connection could not be established or was dropped."""

    kind = "transport"
    retryable = True


class AuthError(OctobusError):
    """The remote side rejected our credentials."""

    kind = "auth"
    retryable = True


class RemoteExecError(OctobusError):
    """The command ran and exited non-zero."""

    kind = "exec"

    def __init__(self, exit_status: int):
        super().__init__(f"command exited with status {exit_status}")
        self.exit_status = exit_status
