"""Per-host session lifecycle."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from .errors import OctobusError, RemoteExecError
from .hosts import Credentials, HostTarget
from .sink import OutputSink, StreamKind
from .transport import READ_SIZE, StreamReader, Transport

logger = logging.getLogger(__name__)


class SessionStatus(Enum):
    """Status of a host's execution."""

    PENDING = "pending"
    CONNECTING = "connecting"
    SESSION_OPEN = "session_open"
    RUNNING = "running"
    RECONNECTING = "reconnecting"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def done(self) -> bool:
        return self in (SessionStatus.SUCCESS, SessionStatus.FAILED, SessionStatus.CANCELLED)


@dataclass
class SessionAttempt:
    """Runtime state for one host."""

    raw: str
    index: int = 0
    target: HostTarget | None = None
    command: str = ""
    status: SessionStatus = SessionStatus.PENDING
    attempts: int = 0
    exit_status: int | None = None
    last_error: Exception | None = None

    @property
    def label(self) -> str:
        return self.target.label if self.target else self.raw


# Type aliases for injected behaviour
StatusCallback = Callable[[SessionAttempt, SessionStatus], None]  # (attempt, status) -> None
SleepFunc = Callable[[float], Awaitable[None]]


class SessionExecutor:
    """Connect to one host, run one command and stream its output.

    Auth and transport failures are retried after ``backoff`` seconds when
    ``reconnect`` is set; a non-zero exit status never is.
    """

    def __init__(
        self,
        attempt: SessionAttempt,
        transport: Transport,
        credentials: Credentials,
        sink: OutputSink,
        reconnect: bool = False,
        backoff: float = 1.0,
        sleep: SleepFunc = asyncio.sleep,
        stop: asyncio.Event | None = None,
        on_status: StatusCallback | None = None,
    ):
        if attempt.target is None:
            raise ValueError("attempt has no target")
        self.attempt = attempt
        self.target = attempt.target
        self.transport = transport
        self.credentials = credentials
        self.sink = sink
        self.reconnect = reconnect
        self.backoff = backoff
        self._sleep = sleep
        self._stop = stop or asyncio.Event()
        self.on_status = on_status

    def _emit_status(self, status: SessionStatus) -> None:
        self.attempt.status = status
        if self.on_status:
            self.on_status(self.attempt, status)

    async def run(self) -> SessionAttempt:
        """Drive the session until it succeeds, fails for good, or is stopped."""
        attempt = self.attempt
        try:
            while True:
                try:
                    await self._run_once()
                except RemoteExecError as e:
                    attempt.exit_status = e.exit_status
                    attempt.last_error = e
                    logger.error("%s: %s: %s", self.target.label, e.kind, e)
                    self._emit_status(SessionStatus.FAILED)
                    return attempt
                except OctobusError as e:
                    attempt.last_error = e
                    if not (e.retryable and self.reconnect):
                        logger.error("%s: %s: %s", self.target.label, e.kind, e)
                        self._emit_status(SessionStatus.FAILED)
                        return attempt
                    if self._stop.is_set():
                        self._emit_status(SessionStatus.CANCELLED)
                        return attempt
                    logger.warning(
                        "%s: %s: %s (attempt %d, retrying in %ss)",
                        self.target.label, e.kind, e, attempt.attempts, self.backoff,
                    )
                    self._emit_status(SessionStatus.RECONNECTING)
                    await self._sleep(self.backoff)
                    if self._stop.is_set():
                        self._emit_status(SessionStatus.CANCELLED)
                        return attempt
                else:
                    attempt.exit_status = 0
                    logger.debug("%s: command completed", self.target.label)
                    self._emit_status(SessionStatus.SUCCESS)
                    return attempt
        except asyncio.CancelledError:
            self._emit_status(SessionStatus.CANCELLED)
            raise

    async def _run_once(self) -> None:
        attempt = self.attempt
        attempt.attempts += 1
        self._emit_status(SessionStatus.CONNECTING)
        logger.debug("%s: connecting (attempt %d)", self.target.label, attempt.attempts)

        conn = await self.transport.connect(self.target, self.credentials)
        try:
            session = await conn.open_session()
            self._emit_status(SessionStatus.SESSION_OPEN)
            try:
                exit_status = await self._execute(session)
            finally:
                session.close()
        finally:
            conn.close()

        if exit_status != 0:
            raise RemoteExecError(exit_status)

    async def _execute(self, session) -> int:
        logger.debug("%s: run %r", self.target.label, self.attempt.command)
        process = await session.start(self.attempt.command)
        self._emit_status(SessionStatus.RUNNING)

        # Drain both pipes for as long as the remote command lives
        pumps = [
            asyncio.ensure_future(self._pump(process.stdout, StreamKind.STDOUT)),
            asyncio.ensure_future(self._pump(process.stderr, StreamKind.STDERR)),
        ]
        try:
            exit_status = await process.wait()
            await asyncio.gather(*pumps)
            return exit_status
        finally:
            for pump in pumps:
                if not pump.done():
                    pump.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            for kind in StreamKind:
                self.sink.close(self.target.label, kind)

    async def _pump(self, reader: StreamReader, kind: StreamKind) -> None:
        while True:
            data = await reader.read(READ_SIZE)
            if not data:
                break
            self.sink.write(self.target.label, kind, data)
