"""
Publishing CLI commands.

  crosspost publish send FILE... --platform …  [--text …] [--user …]
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel

from config.settings import settings
from crosspost.publish.dispatcher import default_dispatcher
from crosspost.publish.errors import PublishError
from crosspost.publish.models import Credentials, MediaFile, Platform, PublishResult

console = Console()
app = typer.Typer(help="Publish media posts to social platforms.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _read_files(paths: list[Path]) -> list[MediaFile]:
    files: list[MediaFile] = []
    for path in paths:
        if not path.is_file():
            rprint(f"[red]File not found:[/red] {path}")
            raise typer.Exit(1)
        files.append(MediaFile(filename=path.name, data=path.read_bytes()))
    return files


def settings_credentials(platform: Platform) -> Credentials:
    """Single-account credentials from the environment, for CLI use without --user."""
    if platform is Platform.TWITTER:
        return Credentials(
            token=settings.twitter_access_token,
            secret=settings.twitter_access_secret,
        )
    return Credentials(
        token=settings.instagram_access_token,
        account_id=settings.instagram_business_account_id,
    )


def print_result(result: PublishResult) -> None:
    if result.success:
        lines = [
            f"[bold]Platform:[/bold] {result.platform.value if result.platform else '—'}",
            f"[bold]Post ID:[/bold]  [cyan]{result.platform_post_id}[/cyan]",
        ]
        if result.media_ids:
            lines.append(f"[bold]Media:[/bold]    {', '.join(result.media_ids)}")
        console.print(
            Panel("\n".join(lines), title="[green]✓ Published[/green]", border_style="green")
        )
        return
    console.print(
        Panel(
            f"[bold]Error:[/bold] {result.error.value if result.error else 'unknown'}\n"
            f"{result.message}",
            title="[red]✗ Publish failed[/red]",
            border_style="red",
        )
    )


async def _send(
    platform: Platform, caption: str, files: list[MediaFile], user: Optional[str]
) -> PublishResult:
    async with default_dispatcher() as dispatcher:
        if user:
            return await dispatcher.publish_for_user(user, platform, caption, files)
        return await dispatcher.publish(platform, settings_credentials(platform), caption, files)


# ---------------------------------------------------------------------------
# send
# ---------------------------------------------------------------------------


@app.command()
def send(
    paths: Optional[list[Path]] = typer.Argument(None, help="Media files to attach."),
    platform: str = typer.Option(
        ..., "--platform", "-p", help="Platform: instagram | twitter (or x)"
    ),
    text: str = typer.Option("", "--text", "-t", help="Caption / tweet text."),
    user: Optional[str] = typer.Option(
        None, "--user", "-u", help="Publish with this user's linked account."
    ),
) -> None:
    """Publish text and media to one platform now."""
    try:
        target = Platform.parse(platform)
    except PublishError as exc:
        rprint(f"[red]{exc}[/red] Use instagram or twitter.")
        raise typer.Exit(1)

    files = _read_files(paths or [])

    with console.status(f"[bold]Publishing to {target.value}…"):
        result = asyncio.run(_send(target, text, files, user))

    print_result(result)
    if not result.success:
        raise typer.Exit(1)
