"""
Main CLI entry point.
Usage: crosspost [COMMAND]
"""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from config.settings import settings
from crosspost.cli.accounts import app as accounts_app
from crosspost.cli.publish import app as publish_app

app = typer.Typer(
    name="crosspost",
    help="📤 Publish media posts to X and Instagram",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
)

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Configure logging before any sub-command runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )
    # httpx logs every request at INFO, including signed URLs.
    logging.getLogger("httpx").setLevel(logging.WARNING)


# Register sub-apps
app.add_typer(publish_app, name="publish", help="📤 Publish to Instagram and X")
app.add_typer(accounts_app, name="accounts", help="🔑 Linked platform accounts")


if __name__ == "__main__":
    app()
