"""Shared fixtures: an in-memory transport that scripts each host's behaviour."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest

from octobus.hosts import Credentials, HostTarget


@dataclass
class Run:
    """One successful connection: open a session and run the command."""

    stdout: list[bytes] = field(default_factory=list)
    stderr: list[bytes] = field(default_factory=list)
    exit_status: int = 0
    open_error: Exception | None = None
    wait_error: Exception | None = None
    hang: bool = False


class FakeReader:
    def __init__(self, chunks: list[bytes]):
        self._chunks = list(chunks)

    async def read(self, n: int = -1) -> bytes:
        await asyncio.sleep(0)
        if self._chunks:
            return self._chunks.pop(0)
        return b""


class FakeProcess:
    def __init__(self, step: Run):
        self.step = step
        self.stdout = FakeReader(step.stdout)
        self.stderr = FakeReader(step.stderr)

    async def wait(self) -> int:
        await asyncio.sleep(0)
        if self.step.hang:
            await asyncio.Event().wait()
        if self.step.wait_error:
            raise self.step.wait_error
        return self.step.exit_status


class FakeSession:
    def __init__(self, transport: "FakeTransport", target: HostTarget, step: Run):
        self.transport = transport
        self.target = target
        self.step = step
        self.closed = False

    async def start(self, command: str) -> FakeProcess:
        self.transport.commands.setdefault(self.target.host, []).append(command)
        return FakeProcess(self.step)

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, transport: "FakeTransport", target: HostTarget, step: Run):
        self.transport = transport
        self.target = target
        self.step = step
        self.closed = False

    async def open_session(self) -> FakeSession:
        if self.step.open_error:
            raise self.step.open_error
        return FakeSession(self.transport, self.target, self.step)

    def close(self) -> None:
        self.closed = True
        self.transport.closed += 1


class FakeTransport:
    """Transport whose outcome per host is a list of steps.

    A step is either an exception raised from ``connect`` or a ``Run``. The
    last step repeats once the list is used up.
    """

    def __init__(self, script: dict[str, list] | None = None, default: Run | None = None):
        self.script = script or {}
        self.default = default or Run()
        self.connects: dict[str, int] = {}
        self.commands: dict[str, list[str]] = {}
        self.targets: list[HostTarget] = []
        self.closed = 0

    async def connect(self, target: HostTarget, credentials: Credentials) -> FakeConnection:
        await asyncio.sleep(0)
        count = self.connects.get(target.host, 0)
        self.connects[target.host] = count + 1
        self.targets.append(target)
        steps = self.script.get(target.host) or [self.default]
        step = steps[min(count, len(steps) - 1)]
        if isinstance(step, Exception):
            raise step
        return FakeConnection(self, target, step)


class RecordingSink:
    def __init__(self):
        self.writes: list[tuple[str, str, bytes]] = []
        self.closed: list[tuple[str, str]] = []

    def write(self, label, stream, data):
        self.writes.append((label, stream.value, data))

    def close(self, label, stream):
        self.closed.append((label, stream.value))

    def output(self, label: str, stream: str = "stdout") -> bytes:
        return b"".join(d for lbl, s, d in self.writes if lbl == label and s == stream)


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def credentials():
    return Credentials(keys=("key",))
