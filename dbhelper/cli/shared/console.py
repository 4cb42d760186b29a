"""Console output and error handling shared by CLI commands.

All user-facing text goes through the rich-backed ``CLIConsole``; loguru
output stays on stderr and is quiet unless ``--verbose`` is given.
"""

from collections.abc import Callable, Sequence
from functools import wraps

import typer
from rich.console import Console, ConsoleRenderable
from rich.panel import Panel
from rich.status import Status

from dbhelper.copy.errors import CopyError, ValidationError

EXIT_FAILURE = 1
EXIT_VALIDATION = 2
EXIT_INTERRUPTED = 130


class CLIConsole:
    """Rich console wrapper for consistent CLI output.

    Args:
        console: Console to write to; a fresh stdout console if None
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def print(self, msg: ConsoleRenderable | str | None = None) -> None:
        self.console.print(msg)

    def status(self, status: str) -> Status:
        return self.console.status(status)

    def info(self, msg: str) -> None:
        self.console.print(f"[cyan]ℹ[/cyan]  {msg}")

    def ok(self, msg: str) -> None:
        self.console.print(f"[green]✅[/green] {msg}")

    def error(self, msg: str) -> None:
        self.console.print(f"[red]❌[/red] {msg}")

    def warn(self, msg: str) -> None:
        self.console.print(f"[yellow]⚠️[/yellow]  {msg}")

    def print_subheader(self, title: str) -> None:
        self.console.print(f"\n[bold underline]{title}[/bold underline]\n")

    def confirm_action(
        self,
        action: str,
        details: str | None = None,
        extra_warning: str | None = None,
        force: bool = False,
    ) -> bool:
        """Ask before a copy writes to the target.

        Args:
            action: What will happen (e.g., "Copy appdb to appdb_copy")
            details: Source, target and plan summary
            extra_warning: Destructive side effect, shown highlighted
            force: Skip the prompt and treat it as confirmed

        Returns:
            True only for an explicit yes
        """
        if force:
            return True

        body = f"[bold]{action}[/bold]"
        if details:
            body += f"\n\n{details}"
        if extra_warning:
            body += f"\n\n[bold red]⚠️  {extra_warning}[/bold red]"
        self.console.print(Panel(body, title="Confirm copy", border_style="yellow"))

        try:
            answer = self.console.input("Proceed? \\[y/N]: ")
        except (KeyboardInterrupt, EOFError):
            self.console.print()
            return False
        return answer.strip().lower() in ("y", "yes")

    def handle_error(
        self, message: str, details: str | None = None, exit_code: int = EXIT_FAILURE
    ) -> None:
        """Print an error with optional details and exit.

        Raises:
            typer.Exit: Always, with ``exit_code``
        """
        self.error(f"[bold red]{message}[/bold red]")
        if details:
            self.console.print(Panel(details, title="Details", border_style="red"))
        raise typer.Exit(exit_code)

    def report_violations(self, violations: Sequence[str]) -> None:
        """Print every validation violation and exit with the validation code."""
        if len(violations) == 1:
            self.handle_error(violations[0], exit_code=EXIT_VALIDATION)
        self.error(f"[bold red]{len(violations)} validation errors[/bold red]")
        for violation in violations:
            self.console.print(f"   • {violation}")
        raise typer.Exit(EXIT_VALIDATION)


def with_error_handling(func: Callable[..., None]) -> Callable[..., None]:
    """Map copy errors to exit codes.

    ValidationError exits 2 after listing every violation, any other
    CopyError exits 1, and KeyboardInterrupt exits 130.
    """

    @wraps(func)
    def wrapper(*args: object, **kwargs: object) -> None:
        try:
            func(*args, **kwargs)
        except ValidationError as e:
            console.report_violations(e.violations)
        except CopyError as e:
            console.handle_error(e.message, e.details)
        except KeyboardInterrupt:
            console.print("\n[dim]Interrupted.[/dim]")
            raise typer.Exit(EXIT_INTERRUPTED) from None

    return wrapper


# Shared console instance for consistent output
console = CLIConsole()
