"""Main CLI application module.

This module provides the main entry point for the dbhelper CLI.

Commands:
- copy: Copy a PostgreSQL database (template clone, dump/restore or sync)
- version: Show the installed version
"""

import typer

from dbhelper import __version__

from .commands import copy

# Create the main CLI application
app = typer.Typer(
    help="🐘 dbhelper - PostgreSQL database copy tool",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command(name="copy")(copy)


@app.command()
def version() -> None:
    """Show the dbhelper version."""
    typer.echo(f"dbhelper {__version__}")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
