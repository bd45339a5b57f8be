"""Shared pytest fixtures for sshfan tests."""

from __future__ import annotations

import logging
import stat
import threading
import time
from pathlib import Path

import pytest

from sshfan.orchestration.scripts import ScriptBody
from sshfan.orchestration.ssh import ExecutionResult, FailureKind

# Stand-in for the ssh client.  It parses the options sshfan passes, logs
# "<target> <jumpbox>" to a file, then behaves according to the host name:
#   down*   -> connect timeout        deny*   -> publickey rejected
#   nohost* -> DNS failure            hang*   -> never finishes
#   anything else runs the script from stdin with the local sh.
FAKE_SSH = """#!/bin/sh
log="{log}"
jump=""
target=""
while [ $# -gt 0 ]; do
  case "$1" in
    -J) jump="$2"; shift 2 ;;
    -o|-i|-p|-l|-F) shift 2 ;;
    -*) shift ;;
    *) target="$1"; shift; break ;;
  esac
done
printf '%s %s\\n' "$target" "$jump" >> "$log"
host="${{target#*@}}"
case "$host" in
  down*) echo "ssh: connect to host $host port 22: Connection timed out" >&2; exit 255 ;;
  deny*) echo "$target: Permission denied (publickey)." >&2; exit 255 ;;
  nohost*) echo "ssh: Could not resolve hostname $host: Name or service not known" >&2; exit 255 ;;
  hang*) exec sleep 30 ;;
esac
exec sh -s
"""


@pytest.fixture(autouse=True)
def reset_root_logging():
    """Drop handlers the CLI installs so later tests don't log to closed streams."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)


@pytest.fixture
def script_file(tmp_path: Path) -> Path:
    """Create a local script that prints two lines."""
    f = tmp_path / "check.sh"
    f.write_text("#!/bin/bash\necho pong\necho done\n")
    return f


@pytest.fixture
def pong_script() -> ScriptBody:
    return ScriptBody.from_text("echo pong\n")


@pytest.fixture
def fake_ssh(tmp_path: Path) -> Path:
    """Write an executable fake ``ssh`` into tmp_path and return its path.

    Invocations are appended to ``fake_ssh.with_suffix('.log')``.
    """
    path = tmp_path / "fake-ssh"
    log = tmp_path / "fake-ssh.log"
    log.write_text("")
    path.write_text(FAKE_SSH.format(log=log))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class FakeExecutor:
    """Executor double that records every call and can simulate failures.

    Args:
        outputs: host -> output text for successful hosts (default "pong").
        failures: host -> FailureKind to return for that host.
        delay: Seconds each call sleeps (or waits for cancellation).
    """

    def __init__(
            self,
            outputs: dict[str, str] | None = None,
            failures: dict[str, FailureKind] | None = None,
            delay: float = 0.0,
    ):
        self.outputs = outputs or {}
        self.failures = failures or {}
        self.delay = delay
        self.calls: list[dict] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def __call__(self, host, script, jumpbox=None, connect_timeout=30, timeout=None,
                 cancel_event=None, **kwargs) -> ExecutionResult:
        with self._lock:
            self.calls.append({
                "host": host,
                "script": script,
                "jumpbox": jumpbox,
                "connect_timeout": connect_timeout,
                "timeout": timeout,
                **kwargs,
            })
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        t0 = time.monotonic()
        try:
            kind = self.failures.get(host)
            if kind is FailureKind.CONNECTION_TIMEOUT:
                # An unreachable host holds its worker for the connect bound
                time.sleep(connect_timeout)
                return ExecutionResult(
                    host=host,
                    output="ssh: connect to host %s port 22: Connection timed out" % host,
                    failure=kind,
                    exit_status=255,
                    elapsed=time.monotonic() - t0,
                )
            if self.delay:
                if cancel_event is not None:
                    if cancel_event.wait(self.delay):
                        return ExecutionResult(host=host, output="", failure=FailureKind.CANCELLED,
                                               error="run interrupted")
                else:
                    time.sleep(self.delay)
            if kind is not None:
                return ExecutionResult(host=host, output="boom\nline2", failure=kind,
                                       exit_status=1, error="exit status 1")
            return ExecutionResult(host=host, output=self.outputs.get(host, "pong"), exit_status=0,
                                   elapsed=time.monotonic() - t0)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def executor_factory():
    """Return the FakeExecutor class for tests that need custom behaviour."""
    return FakeExecutor
