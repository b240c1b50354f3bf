"""Output multiplexing for concurrent sessions.

Every session writes its output through an ``OutputSink``. A sink owns one
lock per physical stream, so a write from one host is complete and flushed
before a write from another host to the same stream can start.
"""

from __future__ import annotations

import sys
import threading
from enum import Enum
from typing import BinaryIO, Protocol, TextIO

# Longest fragment held back while waiting for a newline
MAX_LINE = 64 * 1024


class StreamKind(Enum):
    """Which remote stream a chunk of output came from."""

    STDOUT = "stdout"
    STDERR = "stderr"


class OutputSink(Protocol):
    def write(self, label: str, stream: StreamKind, data: bytes) -> None:
        ...

    def close(self, label: str, stream: StreamKind) -> None:
        ...


class LineBuffer:
    """Accumulate bytes and hand back complete lines.

    A fragment that grows past ``max_line`` bytes without a newline is
    handed back in ``max_line`` sized pieces.
    """

    def __init__(self, max_line: int = MAX_LINE) -> None:
        self.max_line = max_line
        self._pending = bytearray()

    def feed(self, data: bytes) -> list[str]:
        *complete, rest = data.split(b"\n")
        lines = []
        if complete:
            self._pending.extend(complete[0])
            lines.append(bytes(self._pending).rstrip(b"\r"))
            lines.extend(line.rstrip(b"\r") for line in complete[1:])
            self._pending = bytearray(rest)
        else:
            self._pending.extend(rest)

        while len(self._pending) >= self.max_line:
            lines.append(bytes(self._pending[:self.max_line]))
            del self._pending[:self.max_line]
        return [line.decode("utf-8", errors="replace") for line in lines]

    @property
    def pending(self) -> bytes:
        return bytes(self._pending)


class StreamSink:
    """Write raw bytes to the process stdout/stderr."""

    def __init__(self, stdout: BinaryIO | None = None, stderr: BinaryIO | None = None):
        self._streams = {
            StreamKind.STDOUT: stdout if stdout is not None else sys.stdout.buffer,
            StreamKind.STDERR: stderr if stderr is not None else sys.stderr.buffer,
        }
        self._locks = {kind: threading.Lock() for kind in StreamKind}

    def write(self, label: str, stream: StreamKind, data: bytes) -> None:
        out = self._streams[stream]
        with self._locks[stream]:
            out.write(data)
            out.flush()

    def close(self, label: str, stream: StreamKind) -> None:
        pass


# ANSI colors for different hosts
COLORS = [
    "\033[36m",  # Cyan
    "\033[33m",  # Yellow
    "\033[35m",  # Magenta
    "\033[32m",  # Green
    "\033[34m",  # Blue
    "\033[91m",  # Light Red
    "\033[96m",  # Light Cyan
    "\033[93m",  # Light Yellow
]
RESET = "\033[0m"


class LineSink:
    """Split output into lines and prefix each with ``label/stream:``.

    Incomplete trailing fragments are held back until the next write for the
    same host and stream, and dropped when that stream is closed.
    """

    def __init__(
        self,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        color: bool = False,
    ):
        self._streams = {
            StreamKind.STDOUT: stdout if stdout is not None else sys.stdout,
            StreamKind.STDERR: stderr if stderr is not None else sys.stderr,
        }
        self._locks = {kind: threading.Lock() for kind in StreamKind}
        self._buffers: dict[tuple[str, StreamKind], LineBuffer] = {}
        self._color = color
        self._colors: dict[str, str] = {}

    def _prefix(self, label: str, stream: StreamKind) -> str:
        prefix = f"{label}/{stream.value}:"
        if not self._color:
            return prefix
        color = self._colors.setdefault(label, COLORS[len(self._colors) % len(COLORS)])
        return f"{color}{prefix}{RESET}"

    def write(self, label: str, stream: StreamKind, data: bytes) -> None:
        out = self._streams[stream]
        with self._locks[stream]:
            buf = self._buffers.setdefault((label, stream), LineBuffer())
            lines = buf.feed(data)
            if not lines:
                return
            prefix = self._prefix(label, stream)
            out.write("".join(f"{prefix} {line}\n" for line in lines))
            out.flush()

    def close(self, label: str, stream: StreamKind) -> None:
        with self._locks[stream]:
            self._buffers.pop((label, stream), None)
