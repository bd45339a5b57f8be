"""Unit tests for sshfan.orchestration.ssh module."""

import subprocess
import sys
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from sshfan.orchestration.scripts import ScriptBody
from sshfan.orchestration.ssh import (
    ExecutionResult,
    FailureKind,
    build_ssh_cmd,
    classify_failure,
    flatten_output,
    run_remote_script,
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake ssh is a POSIX shell script")


def test_build_ssh_cmd_basic():
    """Batch mode, connect timeout and no password prompts by default."""
    cmd = build_ssh_cmd("192.168.1.100")

    assert cmd[0] == "ssh"
    assert "-T" in cmd
    assert "BatchMode=yes" in cmd
    assert "ConnectTimeout=30" in cmd
    assert "StrictHostKeyChecking=yes" in cmd
    assert "PasswordAuthentication=no" in cmd
    assert cmd[-1] == "192.168.1.100"
    assert "-J" not in cmd


def test_build_ssh_cmd_connect_timeout():
    cmd = build_ssh_cmd("host1", connect_timeout=5)
    assert "ConnectTimeout=5" in cmd


def test_build_ssh_cmd_with_jumpbox():
    cmd = build_ssh_cmd("internal-host", jumpbox="gateway.example.com")

    idx = cmd.index("-J")
    assert cmd[idx + 1] == "gateway.example.com"
    assert cmd[-1] == "internal-host"


def test_build_ssh_cmd_with_user_and_key():
    cmd = build_ssh_cmd("192.168.1.100", ssh_user="root", ssh_key="/path/to/key.pem")

    assert cmd[-1] == "root@192.168.1.100"
    idx = cmd.index("-i")
    assert cmd[idx + 1] == "/path/to/key.pem"


def test_build_ssh_cmd_user_options_come_first():
    """ssh honours the first value of an option, so user options precede defaults."""
    cmd = build_ssh_cmd("host1", ssh_options=["-o", "StrictHostKeyChecking=accept-new"])

    assert cmd.index("StrictHostKeyChecking=accept-new") < cmd.index("StrictHostKeyChecking=yes")


def test_build_ssh_cmd_custom_binary():
    assert build_ssh_cmd("host1", ssh_binary="/usr/local/bin/ssh")[0] == "/usr/local/bin/ssh"


def test_flatten_output():
    assert flatten_output("line1\nline2\n") == "line1 line2"
    assert flatten_output("a\r\nb\rc") == "a b c"
    assert flatten_output("") == ""
    assert "\n" not in flatten_output("x\n\n\ny\n")


@pytest.mark.parametrize("output, expected", [
    ("ssh: connect to host web1 port 22: Connection timed out", FailureKind.CONNECTION_TIMEOUT),
    ("Connection timed out during banner exchange", FailureKind.CONNECTION_TIMEOUT),
    ("ssh: connect to host web1 port 22: Operation timed out", FailureKind.CONNECTION_TIMEOUT),
    ("root@web1: Permission denied (publickey).", FailureKind.AUTHENTICATION_FAILURE),
    ("Host key verification failed.", FailureKind.AUTHENTICATION_FAILURE),
    ("ssh: Could not resolve hostname web9: Name or service not known", FailureKind.HOST_UNREACHABLE),
    ("ssh: connect to host web1 port 22: No route to host", FailureKind.HOST_UNREACHABLE),
    ("ssh: connect to host web1 port 22: Connection refused", FailureKind.HOST_UNREACHABLE),
    ("channel 0: open failed: connect failed: Connection refused\nstdio forwarding failed",
     FailureKind.HOST_UNREACHABLE),
])
def test_classify_transport_failures(output, expected):
    assert classify_failure(255, output) is expected


def test_classify_success():
    assert classify_failure(0, "anything") is None


def test_classify_script_failure():
    """Non-255 exit codes belong to the remote script."""
    assert classify_failure(1, "Permission denied") is FailureKind.SCRIPT_EXECUTION_ERROR


def test_classify_unrecognised_255():
    """A script that itself exits 255 is not mistaken for a transport error."""
    assert classify_failure(255, "custom failure") is FailureKind.SCRIPT_EXECUTION_ERROR


def test_execution_result_properties():
    ok = ExecutionResult(host="h1", output="pong", exit_status=0)
    assert ok.success
    assert ok.status == "Success"

    bad = ExecutionResult(host="h1", output="boom", failure=FailureKind.SCRIPT_EXECUTION_ERROR,
                          exit_status=2, error="exit status 2")
    assert not bad.success
    assert bad.status == "ScriptExecutionError"
    assert bad.detail == "exit status 2: boom"


def test_run_remote_script_dry_run():
    """Dry run returns success without starting a process."""
    with patch("sshfan.orchestration.ssh.subprocess.Popen") as mock_popen:
        result = run_remote_script("192.168.1.100", "echo test", dry_run=True)

    assert not mock_popen.called
    assert result.success
    assert result.output == "[dry-run]"


def _mock_proc(output: bytes, returncode: int) -> MagicMock:
    proc = MagicMock()
    proc.communicate.return_value = (output, None)
    proc.returncode = returncode
    return proc


@patch("sshfan.orchestration.ssh.subprocess.Popen")
def test_run_remote_script_pipes_script_to_bash(mock_popen):
    """The script body goes to stdin of ``ssh <host> bash -s``; stderr is merged."""
    mock_popen.return_value = _mock_proc(b"hello\nworld\n", 0)
    script = ScriptBody.from_text("#!/bin/bash\necho hello\necho world\n")

    result = run_remote_script("192.168.1.100", script, jumpbox="bastion")

    cmd = mock_popen.call_args[0][0]
    assert cmd[0] == "ssh"
    assert cmd[-3:] == ["192.168.1.100", "bash", "-s"]
    assert "bastion" in cmd
    assert mock_popen.call_args[1]["stderr"] == subprocess.STDOUT
    assert mock_popen.return_value.communicate.call_args[1]["input"] == script.content

    assert result.success
    assert result.output == "hello world"
    assert result.exit_status == 0


@patch("sshfan.orchestration.ssh.subprocess.Popen")
def test_run_remote_script_script_error(mock_popen):
    mock_popen.return_value = _mock_proc(b"oops\n", 3)

    result = run_remote_script("host1", b"exit 3")

    assert result.failure is FailureKind.SCRIPT_EXECUTION_ERROR
    assert result.exit_status == 3
    assert result.detail == "exit status 3: oops"


@patch("sshfan.orchestration.ssh.subprocess.Popen")
def test_run_remote_script_auth_failure(mock_popen):
    mock_popen.return_value = _mock_proc(b"root@host1: Permission denied (publickey).\r\n", 255)

    result = run_remote_script("host1", b"true")

    assert result.failure is FailureKind.AUTHENTICATION_FAILURE
    assert result.output == "root@host1: Permission denied (publickey)."


@patch("sshfan.orchestration.ssh.subprocess.Popen")
def test_run_remote_script_launch_failure(mock_popen):
    """A missing ssh binary becomes a result, not an exception."""
    mock_popen.side_effect = FileNotFoundError(2, "No such file or directory")

    result = run_remote_script("host1", b"true")

    assert result.failure is FailureKind.HOST_UNREACHABLE
    assert "failed to start ssh" in result.error


@patch("sshfan.orchestration.ssh.subprocess.Popen")
def test_run_remote_script_retries_communicate_without_input(mock_popen):
    """After a poll timeout the script is not sent a second time."""
    proc = MagicMock()
    proc.returncode = 0
    proc.communicate.side_effect = [
        subprocess.TimeoutExpired(cmd="ssh", timeout=0.2),
        (b"pong\n", None),
    ]
    mock_popen.return_value = proc

    result = run_remote_script("host1", b"echo pong")

    first, second = proc.communicate.call_args_list
    assert first[1]["input"] == b"echo pong"
    assert second[1]["input"] is None
    assert result.output == "pong"


# ---------------------------------------------------------------------------
# Real subprocess behaviour against a fake ssh client
# ---------------------------------------------------------------------------

@posix_only
def test_fake_ssh_runs_script(fake_ssh, pong_script):
    result = run_remote_script("web1", pong_script, ssh_binary=str(fake_ssh))

    assert result.success
    assert result.output == "pong"


@posix_only
def test_fake_ssh_combined_output(fake_ssh):
    script = ScriptBody.from_text("echo out\necho err >&2\n")

    result = run_remote_script("web1", script, ssh_binary=str(fake_ssh))

    assert "out" in result.output
    assert "err" in result.output
    assert "\n" not in result.output


@posix_only
def test_fake_ssh_script_exit_status(fake_ssh):
    script = ScriptBody.from_text("echo failing\nexit 4\n")

    result = run_remote_script("web1", script, ssh_binary=str(fake_ssh))

    assert result.failure is FailureKind.SCRIPT_EXECUTION_ERROR
    assert result.exit_status == 4
    assert result.output == "failing"


@posix_only
@pytest.mark.parametrize("host, kind", [
    ("down1", FailureKind.CONNECTION_TIMEOUT),
    ("deny1", FailureKind.AUTHENTICATION_FAILURE),
    ("nohost1", FailureKind.HOST_UNREACHABLE),
])
def test_fake_ssh_transport_failures(fake_ssh, pong_script, host, kind):
    result = run_remote_script(host, pong_script, ssh_binary=str(fake_ssh))

    assert result.failure is kind
    assert result.exit_status == 255


@posix_only
def test_fake_ssh_jumpbox_and_user(fake_ssh, pong_script):
    run_remote_script("web1", pong_script, jumpbox="bastion", ssh_user="ops",
                      ssh_binary=str(fake_ssh))

    log = fake_ssh.with_suffix(".log").read_text().splitlines()
    assert log == ["ops@web1 bastion"]


@posix_only
def test_fake_ssh_overall_timeout(fake_ssh, pong_script):
    t0 = time.monotonic()
    result = run_remote_script("hang1", pong_script, timeout=1, ssh_binary=str(fake_ssh))
    elapsed = time.monotonic() - t0

    assert result.failure is FailureKind.SCRIPT_EXECUTION_ERROR
    assert "timed out" in result.error
    assert elapsed < 5


@posix_only
def test_fake_ssh_cancellation(fake_ssh, pong_script):
    """Setting the cancel event kills the in-flight session promptly."""
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    try:
        t0 = time.monotonic()
        result = run_remote_script("hang1", pong_script, cancel_event=cancel,
                                   ssh_binary=str(fake_ssh))
        elapsed = time.monotonic() - t0
    finally:
        timer.cancel()

    assert result.failure is FailureKind.CANCELLED
    assert elapsed < 5
