"""CLI account commands — link platform tokens to local users."""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import Optional

import typer
from pydantic import ValidationError
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config.settings import settings
from crosspost.publish.dispatcher import default_dispatcher
from crosspost.publish.errors import PublishError
from crosspost.publish.models import Platform
from crosspost.storage.credentials import CredentialStore, LinkedAccount

console = Console()
app = typer.Typer(help="Manage linked X and Instagram accounts.")


def _store() -> CredentialStore:
    return CredentialStore(settings.credentials_db)


def _platform(value: str) -> Platform:
    try:
        return Platform.parse(value)
    except PublishError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(1)


def _format_dt(value: Optional[dt.datetime]) -> str:
    if value is None:
        return "—"
    return value.strftime("%d/%m/%Y %H:%M")


# ---------------------------------------------------------------------------
# link / unlink
# ---------------------------------------------------------------------------


@app.command()
def link(
    user: str = typer.Option(..., "--user", "-u", help="Local user id"),
    platform: str = typer.Option(..., "--platform", "-p", help="instagram | twitter"),
    token: str = typer.Option(..., "--token", help="Access token"),
    secret: str = typer.Option("", "--secret", help="Access token secret (X only)"),
    account_id: str = typer.Option("", "--account-id", help="Business account id (Instagram only)"),
    expires_at: Optional[str] = typer.Option(
        None, "--expires-at", help='Token expiry, ISO 8601 UTC, e.g. "2026-12-31T00:00"'
    ),
) -> None:
    """Link (or re-link) a platform account to a user."""
    target = _platform(platform)

    expiry: Optional[dt.datetime] = None
    if expires_at:
        try:
            expiry = dt.datetime.fromisoformat(expires_at)
        except ValueError:
            rprint(f"[red]Invalid --expires-at format:[/red] {expires_at!r}")
            raise typer.Exit(1)
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=dt.timezone.utc)

    try:
        account = _store().link(
            user, target, token, secret=secret, account_id=account_id, expires_at=expiry
        )
    except ValidationError as exc:
        rprint(f"[red]Cannot link account:[/red] {exc.errors()[0]['msg']}")
        raise typer.Exit(1)

    rprint(f"[green]✓ Linked[/green] {account.platform.value} for [bold]{account.user_id}[/bold]")


@app.command()
def unlink(
    user: str = typer.Option(..., "--user", "-u"),
    platform: str = typer.Option(..., "--platform", "-p"),
) -> None:
    """Remove a linked account."""
    target = _platform(platform)
    if not _store().unlink(user, target):
        rprint(f"[yellow]No {target.value} account linked for {user}.[/yellow]")
        raise typer.Exit(1)
    rprint(f"[green]✓ Unlinked[/green] {target.value} for [bold]{user}[/bold]")


# ---------------------------------------------------------------------------
# list / check
# ---------------------------------------------------------------------------


@app.command("list")
def list_accounts(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only this user."),
) -> None:
    """List linked accounts (tokens are never shown)."""
    accounts = _store().list_links(user)
    if not accounts:
        rprint("[yellow]No linked accounts.[/yellow]")
        return

    table = Table(title=f"🔑 Linked accounts — {len(accounts)}")
    table.add_column("User", style="cyan")
    table.add_column("Platform")
    table.add_column("Account ID", style="dim")
    table.add_column("Linked (UTC)")
    table.add_column("Expires (UTC)")

    for account in accounts:
        expired = account.to_credentials().is_expired
        table.add_row(
            account.user_id,
            account.platform.value,
            account.account_id or "—",
            _format_dt(account.linked_at),
            f"[red]{_format_dt(account.expires_at)}[/red]" if expired else _format_dt(account.expires_at),
        )

    console.print(table)


async def _check(accounts: list[LinkedAccount]) -> list[tuple[LinkedAccount, bool]]:
    results = []
    async with default_dispatcher() as dispatcher:
        for account in accounts:
            valid = await dispatcher.check_credentials(account.platform, account.to_credentials())
            results.append((account, valid))
    return results


@app.command()
def check(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only this user."),
) -> None:
    """Validate stored tokens against each platform."""
    accounts = _store().list_links(user)
    if not accounts:
        rprint("[yellow]No linked accounts.[/yellow]")
        return

    with console.status("[bold]Checking tokens…"):
        try:
            results = asyncio.run(_check(accounts))
        except PublishError as exc:
            rprint(f"[red]Check failed:[/red] {exc}")
            raise typer.Exit(1)

    for account, valid in results:
        mark = "[green]✓ valid[/green]" if valid else "[red]✗ invalid[/red]"
        rprint(f"  {account.user_id:<20} {account.platform.value:<10} {mark}")

    if not all(valid for _, valid in results):
        raise typer.Exit(1)
