"""Shared CLI infrastructure: logging, exit codes, decorators."""

from __future__ import annotations

import logging
import shutil

import click

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_HOST_FAILURES = 1
EXIT_PREFLIGHT = 2
EXIT_INTERRUPTED = 130


class PreflightError(click.ClickException):
    """Validation failure before any host was contacted."""

    exit_code = EXIT_PREFLIGHT


def _setup_logging(verbose: bool):
    """Configure logging based on verbosity.

    Logs go to stderr so stdout carries nothing but report lines.  Uses
    explicit handler setup instead of ``logging.basicConfig`` which is
    silently a no-op when the root logger already has handlers.
    """
    level = logging.DEBUG if verbose else logging.INFO
    fmt = ("%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s" if verbose
           else "%(message)s")

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt="%H:%M:%S"))
    root.addHandler(handler)


def _load_config(config_path=None):
    """Create SshfanConfig, turning config errors into pre-flight errors."""
    from sshfan.config import ConfigError, SshfanConfig

    try:
        return SshfanConfig(config_path) if config_path else SshfanConfig()
    except ConfigError as e:
        raise PreflightError(str(e))


def _resolve_hosts_or_exit(hosts, hosts_file):
    """Resolve and expand the target hosts; abort before any network activity.

    Returns:
        List of hostnames in dispatch order.
    """
    from sshfan.hosts import HostResolutionError, InvalidHostPattern, resolve_hosts

    try:
        host_list = resolve_hosts(hosts=hosts, hosts_file=hosts_file)
    except InvalidHostPattern as e:
        raise PreflightError("Invalid host pattern: %s" % e)
    except HostResolutionError as e:
        raise PreflightError(str(e))
    return host_list


def _require_ssh_binary(ssh_binary: str) -> None:
    if shutil.which(ssh_binary) is None:
        raise PreflightError("ssh client not found: %s" % ssh_binary)


def host_options(f):
    """Common host-targeting options: --hosts, --hosts-file."""
    f = click.option("--hosts-file", default=None, type=click.Path(dir_okay=False),
                     help="File with host patterns (one per line, # comments)")(f)
    f = click.option("--hosts", "-H", default=None,
                     help="Host pattern, e.g. '{web,db}serv{1..50}'")(f)
    return f


def dry_run_option(f):
    """Common --dry-run flag."""
    return click.option("--dry-run", "-n", is_flag=True,
                        help="Show what would be done")(f)
