"""Shared fakes for installer tests."""

import io
import os

import pytest
from rich.console import Console

from wasf_installer import postinstall


class FakeClock:
    """Clock whose time only moves when ``sleep`` is called."""

    def __init__(self, start=100.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProcess:
    """Stands in for subprocess.Popen with real OS pipes.

    The pipes hold the given output up front; poll() reports the exit code
    after ``polls_before_exit`` calls.
    """

    def __init__(self, stdout_data=b"", stderr_data=b"", polls_before_exit=3, exit_code=0):
        self.stdout = self._pipe_with(stdout_data)
        self.stderr = self._pipe_with(stderr_data)
        self.polls_before_exit = polls_before_exit
        self.exit_code = exit_code
        self.poll_count = 0
        self.returncode = None

    @staticmethod
    def _pipe_with(data):
        read_fd, write_fd = os.pipe()
        os.write(write_fd, data)
        os.close(write_fd)
        return os.fdopen(read_fd, "rb")

    @property
    def exited(self):
        return self.returncode is not None

    def poll(self):
        self.poll_count += 1
        if self.poll_count > self.polls_before_exit:
            self.returncode = self.exit_code
        return self.returncode

    def wait(self):
        self.returncode = self.exit_code
        return self.returncode


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def quiet_console():
    return Console(file=io.StringIO(), width=100)


@pytest.fixture
def no_step_delay(monkeypatch):
    monkeypatch.setattr(postinstall, "STEP_MIN_DURATION", 0)


@pytest.fixture
def make_process():
    return FakeProcess
