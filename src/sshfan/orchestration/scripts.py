"""Local script loading.

The script is read from disk exactly once per run.  The resulting
:class:`ScriptBody` is shared read-only by every job, so all hosts
execute the same snapshot even if the file changes mid-run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


class MissingOrUnreadableScript(Exception):
    """Raised when the script path is missing, absent, or cannot be read."""

    pass


@dataclass(frozen=True)
class ScriptBody:
    """Immutable snapshot of a local script."""

    path: Path | None
    content: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def line_count(self) -> int:
        return self.content.count(b"\n")

    @property
    def name(self) -> str:
        return self.path.name if self.path else "<inline>"

    @classmethod
    def from_text(cls, text: str, path: Path | None = None) -> ScriptBody:
        """Build a body from an in-memory string (UTF-8 encoded)."""
        return cls(path=path, content=text.encode("utf-8"))


def load_script(path: str | Path | None) -> ScriptBody:
    """Read a local script file into a :class:`ScriptBody`.

    Args:
        path: Path to the script on the local machine.

    Returns:
        The script snapshot.

    Raises:
        MissingOrUnreadableScript: If no path was given, the file does not
            exist, is not a regular file, or cannot be read.
    """
    if path is None or not str(path).strip():
        raise MissingOrUnreadableScript("No script given. Use --script.")

    script_path = Path(path).expanduser()
    if not script_path.exists():
        raise MissingOrUnreadableScript("Script file '%s' not found" % script_path)
    if not script_path.is_file():
        raise MissingOrUnreadableScript("Script path '%s' is not a regular file" % script_path)

    try:
        content = script_path.read_bytes()
    except OSError as e:
        raise MissingOrUnreadableScript(
            "Script file '%s' is not readable: %s" % (script_path, e.strerror or e)
        ) from e

    body = ScriptBody(path=script_path, content=content)
    logger.debug("Loaded script %s (%d lines, %d bytes)", script_path, body.line_count, body.size)
    return body
