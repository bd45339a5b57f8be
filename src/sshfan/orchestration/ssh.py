"""SSH remote execution via bash -s stdin piping.

Each job opens one non-interactive ``ssh <host> bash -s`` session and
writes the script body to its stdin.  No files are ever copied to
remote hosts.

Failures never propagate as exceptions: every call returns an
:class:`ExecutionResult`, successful or classified by :class:`FailureKind`.
"""

from __future__ import annotations

import enum
import logging
import re
import subprocess
import threading
import time
from dataclasses import dataclass

from sshfan.orchestration.scripts import ScriptBody

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30

# ssh reserves exit status 255 for its own (transport-level) errors
SSH_ERROR_STATUS = 255

# How often a waiting worker checks the cancellation signal
POLL_INTERVAL = 0.2


class FailureKind(enum.Enum):
    """Why a host did not complete successfully."""

    CONNECTION_TIMEOUT = "ConnectionTimeout"
    AUTHENTICATION_FAILURE = "AuthenticationFailure"
    HOST_UNREACHABLE = "HostUnreachable"
    SCRIPT_EXECUTION_ERROR = "ScriptExecutionError"
    CANCELLED = "Cancelled"


# Checked in order against ssh's own diagnostics when it exits with 255.
_TRANSPORT_FAILURES: list[tuple[FailureKind, re.Pattern]] = [
    (FailureKind.CONNECTION_TIMEOUT, re.compile(
        r"connection timed out|operation timed out|timed out during banner exchange"
        r"|connection timeout",
        re.IGNORECASE,
    )),
    (FailureKind.AUTHENTICATION_FAILURE, re.compile(
        r"permission denied|host key verification failed|too many authentication failures"
        r"|no more authentication methods|authentication failed",
        re.IGNORECASE,
    )),
    (FailureKind.HOST_UNREACHABLE, re.compile(
        r"could not resolve hostname|name or service not known|no route to host"
        r"|connection refused|network is unreachable|connection closed by"
        r"|connection reset by|kex_exchange_identification|stdio forwarding failed",
        re.IGNORECASE,
    )),
]


@dataclass(frozen=True)
class ExecutionResult:
    """Result of running the script on one host.

    ``output`` is the combined stdout/stderr flattened to a single line.
    ``error`` carries a locally generated explanation for failures
    (exit status, timeout, launch error) and is empty on success.
    """

    host: str
    output: str
    failure: FailureKind | None = None
    exit_status: int | None = None
    error: str = ""
    elapsed: float = 0.0

    @property
    def success(self) -> bool:
        return self.failure is None

    @property
    def status(self) -> str:
        return "Success" if self.failure is None else self.failure.value

    @property
    def detail(self) -> str:
        """Failure description: local explanation followed by captured output."""
        return ": ".join(part for part in (self.error, self.output) if part)


def flatten_output(text: str) -> str:
    """Collapse captured output to a single physical line.

    Every line break (``\\r\\n``, ``\\r`` or ``\\n``) becomes one space;
    trailing whitespace is dropped.
    """
    return text.replace("\r\n", "\n").replace("\r", "\n").replace("\n", " ").rstrip()


def classify_failure(exit_status: int, output: str) -> FailureKind | None:
    """Map an ssh exit status and its captured output to a failure kind.

    Returns ``None`` for exit status 0.  Exit status 255 is matched against
    ssh's diagnostics; anything unrecognised, and every other non-zero
    status, is attributed to the remote script.
    """
    if exit_status == 0:
        return None
    if exit_status == SSH_ERROR_STATUS:
        for kind, pattern in _TRANSPORT_FAILURES:
            if pattern.search(output):
                return kind
    return FailureKind.SCRIPT_EXECUTION_ERROR


def build_ssh_cmd(
        host: str,
        jumpbox: str | None = None,
        ssh_user: str | None = None,
        ssh_key: str | None = None,
        ssh_options: list[str] | None = None,
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        ssh_binary: str = "ssh",
) -> list[str]:
    """Build the base SSH command with standard options.

    Batch mode, strict host key checking and disabled password
    authentication guarantee the session never waits on a prompt.

    Args:
        host: Remote hostname or IP address.
        jumpbox: Optional bastion host, passed as ``-J``.
        ssh_user: Optional SSH username (prepended as user@host).
        ssh_key: Optional path to SSH private key file.
        ssh_options: Additional SSH command-line options.
        connect_timeout: SSH connection timeout in seconds.
        ssh_binary: ssh client executable.

    Returns:
        List of command parts suitable for subprocess.
    """
    cmd = [ssh_binary]
    # ssh keeps the first value it sees for an option, so user options go
    # ahead of the defaults below and can override them
    if ssh_options:
        cmd.extend(ssh_options)
    cmd.extend([
        "-T",
        "-o", "BatchMode=yes",
        "-o", f"ConnectTimeout={connect_timeout}",
        "-o", "StrictHostKeyChecking=yes",
        "-o", "PasswordAuthentication=no",
    ])
    if jumpbox:
        cmd.extend(["-J", jumpbox])
    if ssh_key:
        cmd.extend(["-i", ssh_key])
    target = f"{ssh_user}@{host}" if ssh_user else host
    cmd.append(target)
    return cmd


def _script_bytes(script: ScriptBody | bytes | str) -> bytes:
    if isinstance(script, ScriptBody):
        return script.content
    if isinstance(script, str):
        return script.encode("utf-8")
    return script


def _kill(proc: subprocess.Popen) -> bytes:
    """Kill *proc* and collect whatever output it produced."""
    proc.kill()
    out, _ = proc.communicate()
    return out or b""


def run_remote_script(
        host: str,
        script: ScriptBody | bytes | str,
        jumpbox: str | None = None,
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        ssh_user: str | None = None,
        ssh_key: str | None = None,
        ssh_options: list[str] | None = None,
        timeout: int | None = None,
        cancel_event: threading.Event | None = None,
        ssh_binary: str = "ssh",
        dry_run: bool = False,
) -> ExecutionResult:
    """Execute a script on a remote host via stdin piping.

    The script body is written to ``ssh <host> bash -s`` on the remote.
    No files are copied.  Standard output and standard error are captured
    as one combined stream.

    Args:
        host: Remote hostname or IP.
        script: Script content to execute.
        jumpbox: Optional bastion host every connection is routed through.
        connect_timeout: SSH connection timeout in seconds.
        ssh_user: Optional SSH username.
        ssh_key: Optional path to SSH private key.
        ssh_options: Additional SSH options.
        timeout: Overall execution timeout in seconds (None = unbounded).
        cancel_event: Shared run-wide cancellation signal.  When set, the
            session is killed and the result is ``Cancelled``.
        ssh_binary: ssh client executable.
        dry_run: If True, log the script but don't execute.

    Returns:
        ExecutionResult for *host*.  Never raises for per-host failures.
    """
    content = _script_bytes(script)
    via = f" via {jumpbox}" if jumpbox else ""

    if dry_run:
        logger.info("[dry-run] Would execute on %s%s (%d lines, %d bytes)",
                    host, via, content.count(b"\n"), len(content))
        return ExecutionResult(host=host, output="[dry-run]", exit_status=0)

    cmd = build_ssh_cmd(
        host,
        jumpbox=jumpbox,
        ssh_user=ssh_user,
        ssh_key=ssh_key,
        ssh_options=ssh_options,
        connect_timeout=connect_timeout,
        ssh_binary=ssh_binary,
    )
    cmd.extend(["bash", "-s"])

    logger.debug("  SSH script -> %s%s (%d bytes)%s",
                 host, via, len(content),
                 f" [timeout={timeout}s]" if timeout else "")
    logger.debug("SSH command: %s", " ".join(cmd))

    t0 = time.monotonic()
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
    except OSError as e:
        elapsed = time.monotonic() - t0
        logger.error("  SSH script <- %s ERROR (%.1fs): %s", host, elapsed, e)
        return ExecutionResult(
            host=host,
            output="",
            failure=FailureKind.HOST_UNREACHABLE,
            error=f"failed to start {ssh_binary}: {e}",
            elapsed=elapsed,
        )

    deadline = t0 + timeout if timeout else None
    pending: bytes | None = content
    while True:
        wait = POLL_INTERVAL
        if deadline is not None:
            wait = max(0.0, min(wait, deadline - time.monotonic()))
        try:
            raw, _ = proc.communicate(input=pending, timeout=wait)
            break
        except subprocess.TimeoutExpired:
            # Input already handed over; later calls must not resend it
            pending = None

        if cancel_event is not None and cancel_event.is_set():
            raw = _kill(proc)
            elapsed = time.monotonic() - t0
            logger.warning("  SSH script <- %s CANCELLED after %.1fs", host, elapsed)
            return ExecutionResult(
                host=host,
                output=flatten_output(raw.decode("utf-8", errors="replace")),
                failure=FailureKind.CANCELLED,
                error="run interrupted",
                elapsed=elapsed,
            )
        if deadline is not None and time.monotonic() >= deadline:
            raw = _kill(proc)
            elapsed = time.monotonic() - t0
            logger.error("  SSH script <- %s TIMEOUT after %.0fs", host, elapsed)
            return ExecutionResult(
                host=host,
                output=flatten_output(raw.decode("utf-8", errors="replace")),
                failure=FailureKind.SCRIPT_EXECUTION_ERROR,
                error=f"execution timed out after {timeout}s",
                elapsed=elapsed,
            )

    elapsed = time.monotonic() - t0
    text = (raw or b"").decode("utf-8", errors="replace")
    output = flatten_output(text)
    failure = classify_failure(proc.returncode, text)

    if failure is None:
        logger.debug("  SSH script <- %s OK (%.1fs)", host, elapsed)
        return ExecutionResult(host=host, output=output, exit_status=0, elapsed=elapsed)

    error = ""
    if failure is FailureKind.SCRIPT_EXECUTION_ERROR:
        error = f"exit status {proc.returncode}"
    logger.warning(
        "  SSH script <- %s FAILED rc=%d %s (%.1fs): %s",
        host,
        proc.returncode,
        failure.value,
        elapsed,
        output[:200],
    )
    return ExecutionResult(
        host=host,
        output=output,
        failure=failure,
        exit_status=proc.returncode,
        error=error,
        elapsed=elapsed,
    )
