"""sshfan expand command."""

from __future__ import annotations

import click

from ._common import PreflightError


@click.command()
@click.argument("patterns", nargs=-1, required=True)
@click.option("--count", "-c", is_flag=True, help="Only print the number of hosts")
def expand(patterns, count):
    """Print the hosts a pattern expands to, one per line.

    Useful to check a pattern before running anything:

      sshfan expand '{web,db}serv{01..12}'
    """
    from sshfan.hosts import InvalidHostPattern, expand_host_patterns

    try:
        hosts = expand_host_patterns(list(patterns))
    except InvalidHostPattern as e:
        raise PreflightError("Invalid host pattern: %s" % e)

    if count:
        click.echo(len(hosts))
        return
    for host in hosts:
        click.echo(host)
