"""claimflow CLI commands for database setup, users and claim inspection."""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(help="claimflow expense workflow CLI", no_args_is_help=True)
console = Console()


def _async_run(coro):
    """Run an async coroutine."""
    return asyncio.run(coro)


@app.command()
def serve() -> None:
    """Start the API and Socket.IO server."""
    from claimflow.main import main

    main()


@app.command("init-db")
def init_db_cmd() -> None:
    """Create database tables."""
    from claimflow.database import close_db, init_db

    async def _run() -> None:
        await init_db()
        await close_db()

    _async_run(_run())
    console.print("[green]✓[/green] Database initialized")


@app.command("add-user")
def add_user(
    email: str = typer.Argument(..., help="Login email"),
    first_name: str = typer.Option(..., "--first", help="First name"),
    last_name: str = typer.Option(..., "--last", help="Last name"),
    role: str = typer.Option("staff", "--role", "-r", help="staff or admin"),
) -> None:
    """Register a staff member or administrator."""
    from claimflow.database import close_db, get_session_factory, init_db
    from claimflow.errors import ClaimflowError
    from claimflow.modules.claims.repository import UserRepository
    from claimflow.security.rbac import Role

    try:
        role = Role(role).value
    except ValueError:
        console.print(f"[red]✗[/red] Unknown role '{role}' (use staff or admin)")
        raise typer.Exit(1)

    async def _run() -> int:
        await init_db()
        try:
            return await UserRepository(get_session_factory()).add(email, first_name, last_name, role)
        finally:
            await close_db()

    try:
        user_id = _async_run(_run())
    except ClaimflowError as exc:
        console.print(f"[red]✗[/red] {exc.message}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Added {role} [bold]{email}[/bold] (id {user_id})")


@app.command("list-claims")
def list_claims(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="pending, approved or rejected"),
) -> None:
    """Show claims, newest first."""
    from claimflow.database import close_db, get_session_factory, init_db
    from claimflow.modules.claims.repository import ClaimRepository
    from claimflow.modules.claims.service import WorkflowEngine
    from claimflow.modules.notifications.bus import NotificationBus

    async def _run():
        await init_db()
        try:
            engine = WorkflowEngine(ClaimRepository(get_session_factory()), NotificationBus())
            return await engine.list_all(status)
        finally:
            await close_db()

    claims = _async_run(_run())
    if not claims:
        console.print("[dim]No claims found.[/dim]")
        return

    table = Table(title="Expense claims")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("User", justify="right")
    table.add_column("Amount", justify="right")
    table.add_column("Description")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Submitted", style="dim")

    colors = {"pending": "yellow", "approved": "green", "rejected": "red"}
    for c in claims:
        table.add_row(
            str(c.id),
            c.submitter.email if c.submitter else str(c.submitter_id),
            f"{c.amount:.2f}",
            c.description,
            c.category.value if c.category else "-",
            f"[{colors[c.status.value]}]{c.status.value}[/{colors[c.status.value]}]",
            c.submitted_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


if __name__ == "__main__":
    app()
