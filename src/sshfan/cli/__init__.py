"""sshfan CLI — run one script on many hosts over SSH."""

from __future__ import annotations

import click

from sshfan import __version__
from ._common import _setup_logging
from ._expand import expand
from ._run import run


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose/debug output")
@click.version_option(__version__, prog_name="sshfan")
@click.pass_context
def main(ctx, verbose):
    """sshfan — Run a script on many SSH hosts in parallel."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _setup_logging(verbose)


main.add_command(run)
main.add_command(expand)
