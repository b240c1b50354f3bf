"""SSH transport used by the session executor.

The executor only depends on the protocols below. ``AsyncSSHTransport``
implements them on top of asyncssh and translates its exceptions into
octobus errors.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol

import asyncssh

from .errors import AuthError, ConfigError, TransportError
from .hosts import Credentials, HostTarget

logger = logging.getLogger(__name__)

READ_SIZE = 32 * 1024


class StreamReader(Protocol):
    async def read(self, n: int = -1) -> bytes:
        ...


class RemoteProcess(Protocol):
    stdout: StreamReader
    stderr: StreamReader

    async def wait(self) -> int:
        ...


class Session(Protocol):
    async def start(self, command: str) -> RemoteProcess:
        ...

    def close(self) -> None:
        ...


class Connection(Protocol):
    async def open_session(self) -> Session:
        ...

    def close(self) -> None:
        ...


class Transport(Protocol):
    async def connect(self, target: HostTarget, credentials: Credentials) -> Connection:
        ...


@contextmanager
def _translate(target: HostTarget) -> Iterator[None]:
    """Map asyncssh and socket errors onto octobus errors."""
    try:
        yield
    except asyncssh.PermissionDenied as e:
        raise AuthError(f"authentication failed for {target.label}: {e.reason}") from e
    except asyncssh.Error as e:
        raise TransportError(f"{target.label}: {e.reason}") from e
    except asyncio.TimeoutError as e:
        raise TransportError(f"connection to {target.address} timed out") from e
    except OSError as e:
        raise TransportError(f"{target.address}: {e.strerror or e}") from e


class _Reader:
    def __init__(self, target: HostTarget, reader: asyncssh.SSHReader):
        self._target = target
        self._reader = reader

    async def read(self, n: int = -1) -> bytes:
        with _translate(self._target):
            return await self._reader.read(n)


class AsyncSSHProcess:
    def __init__(self, target: HostTarget, process: asyncssh.SSHClientProcess):
        self._target = target
        self._process = process
        self.stdout = _Reader(target, process.stdout)
        self.stderr = _Reader(target, process.stderr)

    async def wait(self) -> int:
        with _translate(self._target):
            result = await self._process.wait()
        if result.exit_status is None and result.exit_signal is None:
            raise TransportError(f"{self._target.label}: connection lost before exit status")
        return result.returncode

    def close(self) -> None:
        self._process.close()


class AsyncSSHSession:
    """One command execution channel on an asyncssh connection."""

    def __init__(self, target: HostTarget, conn: asyncssh.SSHClientConnection):
        self._target = target
        self._conn = conn
        self._process: AsyncSSHProcess | None = None

    async def start(self, command: str) -> AsyncSSHProcess:
        with _translate(self._target):
            process = await self._conn.create_process(command, encoding=None)
        self._process = AsyncSSHProcess(self._target, process)
        return self._process

    def close(self) -> None:
        if self._process:
            self._process.close()


class AsyncSSHConnection:
    def __init__(self, target: HostTarget, conn: asyncssh.SSHClientConnection):
        self._target = target
        self._conn = conn

    async def open_session(self) -> AsyncSSHSession:
        if self._conn.is_closed():
            raise TransportError(f"{self._target.label}: connection closed")
        return AsyncSSHSession(self._target, self._conn)

    def close(self) -> None:
        self._conn.close()


class AsyncSSHTransport:
    """Open SSH connections with asyncssh."""

    def __init__(self, connect_timeout: float | None = 30, known_hosts: Any = None):
        self.connect_timeout = connect_timeout
        # None skips host key verification
        self.known_hosts = known_hosts

    async def connect(self, target: HostTarget, credentials: Credentials) -> AsyncSSHConnection:
        options: dict[str, Any] = {
            "port": target.port,
            "username": target.user or None,
            "known_hosts": self.known_hosts,
            "connect_timeout": self.connect_timeout,
        }
        methods = credentials.auth_methods(target)
        if methods:
            options["preferred_auth"] = methods
        password = target.password or credentials.password
        if password:
            options["password"] = password
        if credentials.keys:
            options["client_keys"] = list(credentials.keys)

        logger.debug("connecting to %s (auth: %s)", target.label, ", ".join(methods) or "default")
        with _translate(target):
            conn = await asyncssh.connect(target.host, **options)
        return AsyncSSHConnection(target, conn)


def load_private_key(path: str | Path, passphrase: str | None = None) -> asyncssh.SSHKey:
    """Load a private key from disk, expanding ``~``."""
    key_path = Path(path).expanduser()
    logger.debug("load ssh key: %s", key_path)
    try:
        return asyncssh.read_private_key(key_path, passphrase)
    except OSError as e:
        raise ConfigError(f"SSH key not found: {key_path}") from e
    except (asyncssh.KeyImportError, asyncssh.KeyEncryptionError) as e:
        raise ConfigError(f"cannot load SSH key {key_path}: {e}") from e
