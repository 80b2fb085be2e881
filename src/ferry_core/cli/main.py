"""Entry point of the ferry CLI.

Commands:
    ferry promote: Promote an application version into an environment

Example:
    $ ferry --help
    $ ferry promote myapp --version 1.2.0 --env production
"""

from __future__ import annotations

import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as package_version

import click

from ferry_core.cli.promote import promote_command
from ferry_core.cli.utils import ExitCode


def _installed_version() -> str:
    try:
        return package_version("ferry-core")
    except PackageNotFoundError:
        return "unknown"


@click.group(
    name="ferry",
    help="ferry - Promote application versions into deployment environments.",
    epilog="Use 'ferry <command> --help' for command-specific help.",
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(version=_installed_version(), prog_name="ferry", message="%(prog)s %(version)s")
def cli() -> None:
    """Root command group of the ferry CLI."""


cli.add_command(promote_command)


def main(argv: list[str] | None = None) -> None:
    """Run the ferry CLI.

    Commands exit with their own codes; usage errors reported by click exit
    with ``ExitCode.USAGE_ERROR``.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        cli.main(args=argv, prog_name="ferry", standalone_mode=False)
    except click.UsageError as e:
        e.show()
        sys.exit(int(ExitCode.USAGE_ERROR))
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(int(ExitCode.GENERAL_ERROR))


if __name__ == "__main__":
    main()
