"""Presentation layer formatting functions for sshfan CLI."""

from collections import Counter

from sshfan.orchestration.ssh import ExecutionResult


def format_failure_breakdown(failures: list[ExecutionResult]) -> str:
    """Summarise failures by kind, most frequent first.

    Example: ``"HostUnreachable: 3, ScriptExecutionError: 1"``.
    """
    if not failures:
        return "no failures"
    counts = Counter(r.failure.value for r in failures if r.failure is not None)
    return ", ".join(f"{kind}: {n}" for kind, n in counts.most_common())


def format_host_columns(hosts: list[str], width: int = 80) -> str:
    """Lay out hostnames in aligned columns that fit within *width*."""
    if not hosts:
        return ""
    col_width = max(len(h) for h in hosts) + 2
    per_row = max(1, width // col_width)
    lines = []
    for i in range(0, len(hosts), per_row):
        row = hosts[i:i + per_row]
        lines.append("".join(f"{h:<{col_width}}" for h in row).rstrip())
    return "\n".join(lines)
