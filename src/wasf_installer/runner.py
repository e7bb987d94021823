"""Child process runner for the scaffolding command.

Spawns the command with both output streams on pipes, forwards whatever
the child writes, and reports a synthetic progress percentage derived from
elapsed time. The wrapped tool gives no structured progress signal, so the
bar only tells the user that work is still happening.
"""

import codecs
import os
import queue
import subprocess
import sys
import threading
import time
from typing import Callable, List, Optional

from wasf_installer.ui import Styles, console

# Percent per second of elapsed time
PROGRESS_RATE = 8.0
# Highest value shown while the child is still running
PROGRESS_CEILING = 90
POLL_INTERVAL = 0.1
# Returned when the command could not be started at all; no exit status or
# signal-terminated returncode can take this value
SPAWN_FAILED = -256

READ_CHUNK = 4096
READER_JOIN_TIMEOUT = 1.0


def synthetic_percent(elapsed: float, rate: float = PROGRESS_RATE, ceiling: int = PROGRESS_CEILING) -> int:
    """Return the percentage shown after ``elapsed`` seconds of a running child."""
    return int(min(ceiling, max(0.0, elapsed) * rate))


class ProgressMeter:
    """Progress state for one run.

    The percentage never decreases, stays at or below the ceiling while the
    child runs, and only ``finish()`` moves it to 100.
    """

    def __init__(self, rate: float = PROGRESS_RATE, ceiling: int = PROGRESS_CEILING):
        self.rate = rate
        self.ceiling = min(ceiling, 99)
        self.percent = 0
        self.finished = False

    def advance(self, elapsed: float) -> int:
        if not self.finished:
            self.percent = max(self.percent, synthetic_percent(elapsed, self.rate, self.ceiling))
        return self.percent

    def finish(self) -> int:
        self.finished = True
        self.percent = 100
        return self.percent


class _LineRelay:
    """Decode child output incrementally and forward it one line at a time."""

    def __init__(self, echo: Callable[[str], None]):
        self._echo = echo
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes):
        if not data:
            return
        self._buffer += self._decoder.decode(data)
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self._echo(line + "\n")

    def flush(self):
        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer:
            self._echo(self._buffer + "\n")
            self._buffer = ""


class _NonBlockingPipe:
    """POSIX pipe switched to non-blocking mode and read with os.read."""

    def __init__(self, pipe):
        self.pipe = pipe
        self._fd = pipe.fileno()
        self.eof = False
        os.set_blocking(self._fd, False)

    def drain(self, final: bool = False) -> bytes:
        chunks: List[bytes] = []
        while not self.eof:
            try:
                chunk = os.read(self._fd, READ_CHUNK)
            except BlockingIOError:
                break
            if not chunk:
                self.eof = True
                break
            chunks.append(chunk)
        return b"".join(chunks)

    def close(self):
        self.pipe.close()


class _ThreadedPipe:
    """Pipe read by a daemon thread into a queue.

    Used where anonymous pipes cannot be polled (Windows). The polling loop
    only ever takes from the queue, so it never blocks on the child.
    """

    def __init__(self, pipe):
        self.pipe = pipe
        self._chunks: "queue.Queue[bytes]" = queue.Queue()
        self._thread = threading.Thread(target=self._pump, daemon=True)
        self._thread.start()

    def _pump(self):
        read = self.pipe.read1 if hasattr(self.pipe, "read1") else self.pipe.read
        while True:
            chunk = read(READ_CHUNK)
            if not chunk:
                break
            self._chunks.put(chunk)

    def drain(self, final: bool = False) -> bytes:
        if final:
            self._thread.join(READER_JOIN_TIMEOUT)
        chunks: List[bytes] = []
        while True:
            try:
                chunks.append(self._chunks.get_nowait())
            except queue.Empty:
                break
        return b"".join(chunks)

    def close(self):
        # A grandchild may still hold the write end; leave the pipe to the reader then
        self._thread.join(READER_JOIN_TIMEOUT)
        if not self._thread.is_alive():
            self.pipe.close()


def _open_pipe(pipe):
    if os.name == "posix":
        return _NonBlockingPipe(pipe)
    return _ThreadedPipe(pipe)


def _writer(stream_name: str) -> Callable[[str], None]:
    def write(text: str):
        stream = getattr(sys, stream_name)
        stream.write(text)
        stream.flush()
    return write


def _discard(percent: int):
    pass


def spawn(cmd: List[str], cwd: Optional[str] = None) -> subprocess.Popen:
    """Start ``cmd`` with stdout and stderr on pipes."""
    return subprocess.Popen(
        cmd,
        cwd=cwd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )


def monitor(
    process,
    *,
    render: Optional[Callable[[int], None]] = None,
    echo: Optional[Callable[[str], None]] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    poll_interval: float = POLL_INTERVAL,
    rate: float = PROGRESS_RATE,
) -> int:
    """Poll a running process until it exits and return its exit code.

    Every iteration drains both pipes, then either renders the time-based
    percentage or, once the child has exited, the final 100.
    """
    render = render or _discard
    streams = [
        (_open_pipe(process.stdout), _LineRelay(echo or _writer("stdout"))),
        (_open_pipe(process.stderr), _LineRelay(echo or _writer("stderr"))),
    ]
    meter = ProgressMeter(rate=rate)
    start = clock()
    render(meter.percent)

    try:
        while True:
            for pipe, relay in streams:
                relay.feed(pipe.drain())

            if process.poll() is not None:
                break

            render(meter.advance(clock() - start))
            sleep(poll_interval)

        for pipe, relay in streams:
            relay.feed(pipe.drain(final=True))
            relay.flush()
        render(meter.finish())
    finally:
        for pipe, _ in streams:
            pipe.close()

    return process.wait()


def run_with_progress(
    cmd: List[str],
    *,
    cwd: Optional[str] = None,
    render: Optional[Callable[[int], None]] = None,
    echo: Optional[Callable[[str], None]] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    poll_interval: float = POLL_INTERVAL,
    rate: float = PROGRESS_RATE,
) -> int:
    """Run ``cmd`` to completion, forwarding its output and rendering progress.

    Returns the child's exit code, or ``SPAWN_FAILED`` when the command could
    not be started; nothing is rendered in that case.
    """
    try:
        process = spawn(cmd, cwd=cwd)
    except OSError as e:
        console.print(f"[{Styles.error}]Could not start[/{Styles.error}] {' '.join(cmd)}: {e}")
        return SPAWN_FAILED

    return monitor(
        process,
        render=render,
        echo=echo,
        clock=clock,
        sleep=sleep,
        poll_interval=poll_interval,
        rate=rate,
    )
