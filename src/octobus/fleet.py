"""Fan a command out to every host and join on the results."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from .errors import ParseError
from .executor import SessionAttempt, SessionExecutor, SessionStatus, SleepFunc, StatusCallback
from .hosts import DEFAULT_PORT, Credentials, parse_host
from .sink import OutputSink
from .template import render_command, tail_command
from .transport import Transport

logger = logging.getLogger(__name__)


class Fleet:
    """Run one command on many hosts concurrently.

    Every host gets its own task. A failure on one host is logged and ends
    that host only; ``run`` always waits for all of them.
    """

    def __init__(
        self,
        transport: Transport,
        credentials: Credentials,
        sink: OutputSink,
        *,
        user: str = "",
        password: str = "",
        port: int = DEFAULT_PORT,
        reconnect: bool = False,
        backoff: float = 1.0,
        fail_fast: bool = False,
        sleep: SleepFunc = asyncio.sleep,
        on_status: StatusCallback | None = None,
    ):
        self.transport = transport
        self.credentials = credentials
        self.sink = sink
        self.user = user
        self.password = password
        self.port = port
        self.reconnect = reconnect
        self.backoff = backoff
        self.fail_fast = fail_fast
        self.on_status = on_status
        self._sleep = sleep
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def _prepare(self, attempt: SessionAttempt, command: str) -> SessionAttempt:
        attempt.target = parse_host(attempt.raw, self.user, self.password, self.port)
        attempt.command = render_command(command, attempt.target)
        return attempt

    def _fail(self, attempt: SessionAttempt, error: ParseError) -> SessionAttempt:
        attempt.last_error = error
        attempt.status = SessionStatus.FAILED
        logger.error("%s: %s: %s", attempt.label, error.kind, error)
        if self.on_status:
            self.on_status(attempt, SessionStatus.FAILED)
        return attempt

    async def _run_host(
        self, attempt: SessionAttempt, command: str, reconnect: bool
    ) -> SessionAttempt:
        try:
            self._prepare(attempt, command)
        except ParseError as e:
            return self._fail(attempt, e)
        return await self._execute(attempt, reconnect)

    async def _execute(self, attempt: SessionAttempt, reconnect: bool) -> SessionAttempt:
        executor = SessionExecutor(
            attempt,
            self.transport,
            self.credentials,
            self.sink,
            reconnect=reconnect,
            backoff=self.backoff,
            sleep=self._sleep,
            stop=self._stop,
            on_status=self.on_status,
        )
        return await executor.run()

    async def run(self, hosts: Iterable[str], command: str) -> list[SessionAttempt]:
        """Run ``command`` on every host and return one attempt per host, in order."""
        return await self._run_all(list(hosts), command, self.reconnect)

    async def tail_forever(
        self, hosts: Iterable[str], path: str, sudo: bool = False
    ) -> list[SessionAttempt]:
        """Follow ``path`` on every host, reconnecting whenever a session drops.

        Only returns once every host has stopped for good, or after ``stop``.
        """
        return await self._run_all(list(hosts), tail_command(path, sudo), True)

    async def _run_all(
        self, hosts: list[str], command: str, reconnect: bool
    ) -> list[SessionAttempt]:
        logger.debug("running %r on %d hosts", command, len(hosts))
        attempts = [SessionAttempt(raw=raw, index=i) for i, raw in enumerate(hosts)]
        if self._stop.is_set():
            logger.info("fleet already stopped, not starting %d hosts", len(attempts))
            for attempt in attempts:
                attempt.status = SessionStatus.CANCELLED
                if self.on_status:
                    self.on_status(attempt, SessionStatus.CANCELLED)
            return attempts
        if self.fail_fast:
            # Raises on the first bad host before anything connects
            for attempt in attempts:
                self._prepare(attempt, command)
            coros = [self._execute(attempt, reconnect) for attempt in attempts]
        else:
            coros = [self._run_host(attempt, command, reconnect) for attempt in attempts]

        self._tasks = [asyncio.ensure_future(coro) for coro in coros]
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        for attempt, result in zip(attempts, results):
            if isinstance(result, asyncio.CancelledError):
                attempt.status = SessionStatus.CANCELLED
            elif isinstance(result, BaseException):
                logger.error("%s: unexpected error: %r", attempt.label, result)
                attempt.last_error = result
                attempt.status = SessionStatus.FAILED

        failed = [a.label for a in attempts if a.status == SessionStatus.FAILED]
        if failed:
            logger.info("%d of %d hosts failed: %s", len(failed), len(attempts), ", ".join(failed))
        return attempts

    def stop(self) -> None:
        """Stop retrying and cancel every running session.

        A stopped fleet does not start any further runs.
        """
        self._stop.set()
        for task in self._tasks:
            task.cancel()
