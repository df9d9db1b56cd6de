"""
Command-line interface for portal administration.
"""

import asyncio
from dataclasses import asdict
from typing import Any, Awaitable, Optional

import typer
from rich.console import Console
from rich.table import Table

from portal_common.config import get_settings
from portal_common.db import close_engine
from portal_common.logging import bind_actor, get_logger, setup_logging
from portal_sync.authz import Authorizer
from portal_sync.errors import PortalError
from portal_sync.factory import open_backend
from portal_sync.notify import NotificationLevel
from portal_sync.resources.events import EventsStore
from portal_sync.resources.members import MembersStore
from portal_sync.resources.messages import MessagesStore
from portal_sync.resources.monitoring import MonitoringStore, SystemOverview
from portal_sync.resources.volunteers import VolunteersStore

app = typer.Typer(help="Campus portal CLI")
console = Console()
logger = get_logger(__name__)

STORES = {
    "members": MembersStore,
    "volunteers": VolunteersStore,
    "monitoring": MonitoringStore,
    "messages": MessagesStore,
    "events": EventsStore,
}

_LEVEL_STYLE = {
    NotificationLevel.SUCCESS: "[bold green]✓[/bold green]",
    NotificationLevel.INFO: "[cyan]i[/cyan]",
    NotificationLevel.WARNING: "[yellow]![/yellow]",
    NotificationLevel.ERROR: "[bold red]✗[/bold red]",
}


class ConsoleNotifier:
    """Prints store notifications as they happen."""

    def notify(self, level: NotificationLevel, message: str) -> None:
        console.print(f"{_LEVEL_STYLE[level]} {message}")


class CliState:
    as_user: Optional[str] = None


state = CliState()


@app.callback()
def main_options(
    as_user: Optional[str] = typer.Option(
        None, "--as-user", help="Act as the member with this email (SQL backend)"
    ),
):
    """Global options."""
    state.as_user = as_user


def run(coro: Awaitable[Any]) -> Any:
    """Run a command body, release the engine and turn portal errors into exit code 1."""

    async def wrapped():
        try:
            return await coro
        finally:
            await close_engine()

    try:
        return asyncio.run(wrapped())
    except PortalError as exc:
        console.print(f"[bold red]✗[/bold red] {exc.message}")
        raise typer.Exit(code=1)


async def open_store(store_cls, **options):
    backend = await open_backend(email=state.as_user)
    authorizer = await Authorizer.from_backend(backend, get_settings().sync.admin_roles)
    bind_actor(authorizer.user.id if authorizer.user else None, command=store_cls.resource)
    store = store_cls(backend, authorizer, notifier=ConsoleNotifier(), **options)
    await store.open()
    return store, backend


@app.command()
def init_db(
    admin_email: Optional[str] = typer.Option(None, help="Bootstrap an admin with this email"),
    admin_name: str = typer.Option("Portal Admin", help="Display name of the bootstrap admin"),
    admin_password: Optional[str] = typer.Option(
        None, help="Sign-in password for the bootstrap admin", hide_input=True
    ),
):
    """Initialize database tables and the bootstrap admin."""
    from portal_common.db_init import init_database

    console.print("[bold green]Initializing database...[/bold green]")
    try:
        run(init_database(admin_email, admin_name, admin_password))
    except ValueError as exc:
        console.print(f"[bold red]✗[/bold red] {exc}")
        raise typer.Exit(code=1)
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command()
def set_password(
    email: str = typer.Argument(..., help="Email of the member"),
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Set the password a member signs in to the API with."""
    from portal_common.db_init import set_password as store_password

    try:
        found = run(store_password(email, password))
    except ValueError as exc:
        console.print(f"[bold red]✗[/bold red] {exc}")
        raise typer.Exit(code=1)
    if not found:
        console.print(f"[bold red]✗[/bold red] No member with email {email}")
        raise typer.Exit(code=1)
    console.print(f"[bold green]✓[/bold green] Password updated for {email}")


@app.command()
def members(
    status: Optional[str] = typer.Option(None, help="Only members with this status"),
    college: Optional[str] = typer.Option(None, help="Only members of this college"),
    role: Optional[str] = typer.Option(None, help="Only members with this role"),
    search: Optional[str] = typer.Option(None, help="Search name, email, department and college"),
    limit: int = typer.Option(50, help="Number of members to show"),
):
    """List members."""

    async def get_members():
        store, backend = await open_store(MembersStore, status=status, college=college, auto_refresh=False)
        try:
            return store.filter_members(search=search, role=role), store.using_fallback_data
        finally:
            await store.close()
            await backend.aclose()

    rows, fallback = run(get_members())

    table = Table(title="Members (sample data)" if fallback else "Members")
    table.add_column("Name", style="cyan")
    table.add_column("Email", style="green")
    table.add_column("College", style="yellow")
    table.add_column("Status", style="magenta")
    table.add_column("Role")

    for member in rows[:limit]:
        table.add_row(
            member.get("full_name") or "",
            member.get("email") or "",
            member.get("college") or "",
            member.get("status") or "",
            member.get("role") or "",
        )

    console.print(table)
    console.print(f"\n[bold]Shown:[/bold] {min(len(rows), limit)} of {len(rows)}")


@app.command()
def stats(resource: str = typer.Argument(..., help=f"One of: {', '.join(STORES)}")):
    """Show derived statistics for a resource."""
    store_cls = STORES.get(resource)
    if store_cls is None:
        console.print(f"[bold red]✗[/bold red] Unknown resource {resource!r}")
        raise typer.Exit(code=1)

    async def get_stats():
        store, backend = await open_store(store_cls, auto_refresh=False)
        try:
            return store.stats, store.error
        finally:
            await store.close()
            await backend.aclose()

    values, error = run(get_stats())

    table = Table(title=f"{resource.capitalize()} statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta", justify="right")
    for name, value in asdict(values).items():
        table.add_row(name, str(value))
    console.print(table)
    if error:
        console.print(f"[yellow]{error}[/yellow]")


@app.command()
def approve(
    invitation_id: str = typer.Argument(..., help="Membership invitation or request id"),
    role: str = typer.Option("member", help="Role granted to the new member"),
):
    """Approve a membership request."""

    async def do_approve():
        store, backend = await open_store(MembersStore, auto_refresh=False)
        try:
            return await store.approve(invitation_id, role=role)
        finally:
            await store.close()
            await backend.aclose()

    run(do_approve())


@app.command()
def reject(
    invitation_id: str = typer.Argument(..., help="Membership invitation or request id"),
    reason: Optional[str] = typer.Option(None, help="Reason shown to the applicant"),
):
    """Reject a membership request."""

    async def do_reject():
        store, backend = await open_store(MembersStore, auto_refresh=False)
        try:
            return await store.reject(invitation_id, reason=reason)
        finally:
            await store.close()
            await backend.aclose()

    run(do_reject())


def print_overview(overview: SystemOverview, cycle: int) -> None:
    console.print(
        f"\n[bold]Cycle {cycle}[/bold]  health: [bold]{overview.system_health}[/bold]  "
        f"logs: {overview.total_logs} (last hour {overview.recent_logs}, errors {overview.recent_error_count})"
    )
    table = Table(title="Services")
    table.add_column("Service", style="cyan")
    table.add_column("Status", style="magenta")
    table.add_column("Metrics", justify="right")
    for service in overview.services:
        table.add_row(service.service_name, service.status, str(service.metrics))
    console.print(table)


@app.command()
def monitor(
    cycles: int = typer.Option(3, min=1, help="Number of refresh cycles before exiting"),
    interval: Optional[float] = typer.Option(None, help="Seconds between refreshes"),
):
    """Watch the system overview as the monitoring store auto-refreshes."""

    async def watch():
        done = asyncio.Event()
        calls = 0

        # The driver sleeps before every refresh, so each call after the
        # first follows a completed cycle.
        async def paced_sleep(seconds: float) -> None:
            nonlocal calls
            calls += 1
            if calls > 1:
                print_overview(store.stats, calls - 1)
            if calls > cycles:
                done.set()
            await asyncio.sleep(seconds)

        sync = get_settings().sync
        if interval is not None:
            sync = sync.model_copy(update={"refresh_interval_sec": interval})
        backend = await open_backend(email=state.as_user)
        authorizer = await Authorizer.from_backend(backend, sync.admin_roles)
        store = MonitoringStore(
            backend, authorizer, notifier=ConsoleNotifier(), settings=sync, auto_refresh=True, sleep=paced_sleep
        )
        try:
            await store.open()
            if not store.auto_refresh_running:
                console.print("[bold red]✗[/bold red] Monitoring requires an admin account (use --as-user)")
                raise typer.Exit(code=1)
            print_overview(store.stats, 0)
            await done.wait()
        finally:
            await store.close()
            await backend.aclose()

    run(watch())


def main():
    """Main entry point."""
    settings = get_settings()
    setup_logging(settings.logging)
    app()


if __name__ == "__main__":
    main()
