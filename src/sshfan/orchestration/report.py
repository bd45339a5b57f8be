"""Per-host report lines.

Workers finish in whatever order the network allows, so lines appear in
completion order, not in host-list order.  What *is* guaranteed is that
each line is written whole: formatting and the single ``write()`` call
happen under one lock.
"""

from __future__ import annotations

import sys
import threading
from typing import TextIO

from sshfan.orchestration.ssh import ExecutionResult, flatten_output


def format_result(result: ExecutionResult) -> str:
    """Render one report line (without the trailing newline).

    ``"<host>, <output>"`` on success,
    ``"<host>, <FailureKind>: <detail>"`` on failure.
    """
    if result.success:
        return "%s, %s" % (result.host, flatten_output(result.output))
    detail = flatten_output(result.detail)
    if detail:
        return "%s, %s: %s" % (result.host, result.failure.value, detail)
    return "%s, %s" % (result.host, result.failure.value)


class Reporter:
    """Serialized writer of exactly one line per finished host."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream
        self._lock = threading.Lock()
        self.lines_written = 0

    @property
    def stream(self) -> TextIO:
        # Resolved lazily so a replaced sys.stdout is honoured
        return self._stream if self._stream is not None else sys.stdout

    def report(self, result: ExecutionResult) -> None:
        """Format *result* and write it as one atomic, flushed line."""
        with self._lock:
            line = format_result(result) + "\n"
            stream = self.stream
            stream.write(line)
            stream.flush()
            self.lines_written += 1
