"""Host resolution and brace-pattern expansion.

A host pattern is a compact description of many hostnames using the
same brace syntax a shell understands::

    web{1..3}             -> web1, web2, web3
    {a,b}serv{1,2}        -> aserv1, aserv2, bserv1, bserv2
    node{01..10}.lab      -> node01.lab ... node10.lab

Groups compose left to right as a cross product and may be nested.
Expansion order is deterministic and becomes the dispatch order.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_MAX_HOSTS = 100_000

_RANGE_RE = re.compile(r"^(-?\d+)\.\.(-?\d+)$")


class InvalidHostPattern(ValueError):
    """Raised when a host pattern cannot be expanded."""

    pass


class HostResolutionError(Exception):
    """Error during host resolution."""

    pass


def _check_balanced(pattern: str) -> None:
    depth = 0
    for pos, ch in enumerate(pattern):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth < 0:
                raise InvalidHostPattern(
                    "Unbalanced '}' at position %d in host pattern %r" % (pos, pattern)
                )
    if depth:
        raise InvalidHostPattern("Unclosed '{' in host pattern %r" % pattern)


def _find_group(text: str) -> tuple[int, int] | None:
    """Return (open, close) indexes of the first top-level brace group."""
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    for pos in range(start, len(text)):
        if text[pos] == "{":
            depth += 1
        elif text[pos] == "}":
            depth -= 1
            if depth == 0:
                return start, pos
    # _check_balanced runs first, so this is unreachable for public callers
    raise InvalidHostPattern("Unclosed '{' in host pattern %r" % text)


def _split_top_level(body: str) -> list[str]:
    """Split a group body on commas that are not inside a nested group."""
    parts = []
    depth = 0
    current = []
    for ch in body:
        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        current.append(ch)
    parts.append("".join(current))
    return parts


def _expand_range(body: str, pattern: str, max_hosts: int) -> list[str]:
    m = _RANGE_RE.match(body)
    if not m:
        raise InvalidHostPattern(
            "Range {%s} in host pattern %r is not numeric" % (body, pattern)
        )
    first, last = m.group(1), m.group(2)
    start, end = int(first), int(last)
    if start > end:
        raise InvalidHostPattern(
            "Range {%s} in host pattern %r is inverted (start > end)" % (body, pattern)
        )
    if end - start + 1 > max_hosts:
        raise InvalidHostPattern(
            "Host pattern %r expands to more than %d hosts" % (pattern, max_hosts)
        )

    # Zero padding is kept when either endpoint is written with a leading zero
    width = 0
    for literal in (first, last):
        digits = literal.lstrip("-")
        if len(digits) > 1 and digits.startswith("0"):
            width = max(width, len(literal))

    return ["%0*d" % (width, n) for n in range(start, end + 1)]


def _expand(text: str, pattern: str, max_hosts: int) -> list[str]:
    group = _find_group(text)
    if group is None:
        return [text]

    start, end = group
    prefix, body, suffix = text[:start], text[start + 1:end], text[end + 1:]

    alternatives = _split_top_level(body)
    if len(alternatives) > 1:
        options: list[str] = []
        for alt in alternatives:
            options.extend(_expand(alt, pattern, max_hosts))
            if len(options) > max_hosts:
                raise InvalidHostPattern(
                    "Host pattern %r expands to more than %d hosts" % (pattern, max_hosts)
                )
    elif ".." in body:
        options = _expand_range(body, pattern, max_hosts)
    else:
        raise InvalidHostPattern(
            "Brace group {%s} in host pattern %r needs a comma list or a m..n range"
            % (body, pattern)
        )

    rest = _expand(suffix, pattern, max_hosts)
    if len(options) * len(rest) > max_hosts:
        raise InvalidHostPattern(
            "Host pattern %r expands to more than %d hosts" % (pattern, max_hosts)
        )
    return [prefix + option + tail for option in options for tail in rest]


def expand_host_pattern(pattern: str, max_hosts: int = DEFAULT_MAX_HOSTS) -> list[str]:
    """Expand a brace-style host pattern into concrete hostnames.

    Args:
        pattern: Pattern such as ``"{a,b}serv{1..50}"``.
        max_hosts: Upper bound on the size of the expansion.

    Returns:
        Hostnames in left-to-right cross-product order. Duplicates produced
        by the pattern are kept.

    Raises:
        InvalidHostPattern: If the pattern is empty, has unbalanced braces,
            a non-numeric or inverted range, expands past *max_hosts*, or
            yields an empty hostname or one starting with ``-``.
    """
    if pattern is None or not pattern.strip():
        raise InvalidHostPattern("Host pattern is empty")
    pattern = pattern.strip()
    _check_balanced(pattern)
    hosts = _expand(pattern, pattern, max_hosts)
    if len(hosts) > max_hosts:
        raise InvalidHostPattern(
            "Host pattern %r expands to more than %d hosts" % (pattern, max_hosts)
        )
    empty = [h for h in hosts if not h]
    if empty:
        raise InvalidHostPattern("Host pattern %r yields an empty hostname" % pattern)
    dashed = [h for h in hosts if h.startswith("-")]
    if dashed:
        # ssh would parse these as options
        raise InvalidHostPattern(
            "Host pattern %r yields hostname %r starting with '-'" % (pattern, dashed[0])
        )
    logger.debug("Expanded host pattern %r to %d hosts", pattern, len(hosts))
    return hosts


def expand_host_patterns(patterns: str | list[str], max_hosts: int = DEFAULT_MAX_HOSTS) -> list[str]:
    """Expand several patterns in order.

    A single string is split on whitespace first, the way the shell splits
    words before brace expansion.
    """
    if isinstance(patterns, str):
        patterns = patterns.split()
    hosts: list[str] = []
    for pattern in patterns:
        hosts.extend(expand_host_pattern(pattern, max_hosts=max_hosts))
        if len(hosts) > max_hosts:
            raise InvalidHostPattern("Host patterns expand to more than %d hosts" % max_hosts)
    if not hosts:
        raise InvalidHostPattern("Host pattern is empty")
    return hosts


def parse_hosts_file(path: str | Path) -> list[str]:
    """Parse hosts file with one host pattern per line.

    Comments (#) and blank lines are ignored.

    Args:
        path: Path to hosts file

    Returns:
        List of pattern strings (not yet expanded)

    Raises:
        HostResolutionError: If file not found
    """
    file_path = Path(path)
    if not file_path.exists():
        raise HostResolutionError("Hosts file not found: %s" % file_path)

    patterns = []
    with file_path.open("r") as f:
        for line in f:
            # Strip comments
            if "#" in line:
                line = line[: line.index("#")]
            line = line.strip()
            if line:
                patterns.append(line)

    logger.debug("Parsed %d host patterns from file: %s", len(patterns), file_path)
    return patterns


def resolve_hosts(
    hosts: str | None = None,
    hosts_file: str | Path | None = None,
    max_hosts: int = DEFAULT_MAX_HOSTS,
) -> list[str]:
    """Resolve the target host list using priority chain.

    Priority:
    1. hosts (pattern string from the CLI)
    2. hosts_file (path to file with one pattern per line)

    Args:
        hosts: Host pattern, possibly several separated by whitespace
        hosts_file: Path to hosts file
        max_hosts: Upper bound on the expanded host count

    Returns:
        Expanded hostnames in dispatch order

    Raises:
        HostResolutionError: If neither source is given or the file is missing
        InvalidHostPattern: If a pattern cannot be expanded
    """
    if hosts is not None and hosts.strip():
        resolved = expand_host_patterns(hosts, max_hosts=max_hosts)
        logger.debug("Resolved %d hosts from CLI pattern", len(resolved))
        return resolved

    if hosts_file:
        patterns = parse_hosts_file(hosts_file)
        if not patterns:
            raise HostResolutionError("Hosts file is empty: %s" % hosts_file)
        return expand_host_patterns(patterns, max_hosts=max_hosts)

    raise HostResolutionError("No hosts specified. Use --hosts or --hosts-file.")
