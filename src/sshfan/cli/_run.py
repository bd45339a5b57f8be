"""sshfan run command."""

from __future__ import annotations

import logging
import sys

import click

from ._common import (
    EXIT_HOST_FAILURES,
    EXIT_INTERRUPTED,
    EXIT_OK,
    PreflightError,
    _load_config,
    _require_ssh_binary,
    _resolve_hosts_or_exit,
    dry_run_option,
    host_options,
)

logger = logging.getLogger(__name__)


@click.command()
@host_options
@click.option("--script", "-s", "script_path", default=None,
              help="Local script to execute on every host (fed to 'bash -s')")
@click.option("--processes", "-P", type=int, default=None,
              help="Number of parallel workers")
@click.option("--jumpbox", "-J", default=None, help="Jump host for SSH connections")
@click.option("--connect-timeout", type=int, default=None,
              help="SSH connect timeout in seconds [default: 30]")
@click.option("--timeout", type=int, default=None,
              help="Overall per-host execution timeout in seconds")
@click.option("--user", "-u", "ssh_user", default=None, help="SSH username")
@click.option("--key", "-i", "ssh_key", default=None, help="SSH private key file")
@click.option("--config", "config_path", default=None,
              type=click.Path(exists=True, dir_okay=False),
              help="Path to config file")
@dry_run_option
def run(
        hosts, hosts_file, script_path, processes, jumpbox, connect_timeout,
        timeout, ssh_user, ssh_key, config_path, dry_run,
):
    """Run a local script on every host matching a pattern.

    Prints one line per host to stdout, "<host>, <output>", in the order
    hosts finish (not the order of the pattern).  Exits 0 when every host
    succeeded, 1 when any host failed, 2 when the run could not start.

    Examples:

      sshfan run --hosts '{a,l,d}serv{1..50}' -P 32 --script update.sh > report.txt

      sshfan run --hosts tserv1 -P 1 --script check.sh --jumpbox gateway.example.com
    """
    from sshfan.config import build_ssh_kwargs
    from sshfan.orchestration.dispatch import (
        InvalidConcurrency,
        InvalidTimeout,
        WorkerPoolConfig,
        dispatch,
    )
    from sshfan.orchestration.report import Reporter
    from sshfan.orchestration.scripts import MissingOrUnreadableScript, load_script
    from sshfan.utils.cli_formatters import format_failure_breakdown, format_host_columns

    config = _load_config(config_path)

    # Everything below up to dispatch() is pre-flight: no host is contacted
    host_list = _resolve_hosts_or_exit(hosts, hosts_file)

    try:
        script = load_script(script_path)
    except MissingOrUnreadableScript as e:
        raise PreflightError(str(e))

    if processes is None:
        processes = config.default_processes
    if processes is None:
        raise PreflightError("--processes is required (or set defaults.processes in the config)")

    pool_config = WorkerPoolConfig(
        concurrency=processes,
        connect_timeout=connect_timeout if connect_timeout is not None else config.connect_timeout,
        timeout=timeout if timeout is not None else config.timeout,
    )
    try:
        pool_config.validate()
    except (InvalidConcurrency, InvalidTimeout) as e:
        raise PreflightError(str(e))

    jumpbox = jumpbox or config.jumpbox
    ssh_kwargs = build_ssh_kwargs(config, ssh_user=ssh_user, ssh_key=ssh_key)
    if dry_run:
        ssh_kwargs["dry_run"] = True
        logger.info("[dry-run] %d hosts:\n%s", len(host_list), format_host_columns(host_list))
    else:
        _require_ssh_binary(ssh_kwargs.get("ssh_binary", "ssh"))

    logger.debug("Targets: %s", ", ".join(host_list))
    if jumpbox:
        logger.info("Routing all connections through %s", jumpbox)

    summary = dispatch(
        host_list,
        script,
        jumpbox,
        pool_config.concurrency,
        connect_timeout=pool_config.connect_timeout,
        timeout=pool_config.timeout,
        reporter=Reporter(),
        ssh_kwargs=ssh_kwargs,
    )

    if summary.failed:
        logger.warning("%d of %d hosts failed (%s)",
                       summary.failed, summary.total, format_failure_breakdown(summary.failures))

    if summary.cancelled:
        sys.exit(EXIT_INTERRUPTED)
    sys.exit(EXIT_HOST_FAILURES if summary.failed else EXIT_OK)
