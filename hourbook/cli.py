"""Hourbook CLI - async commands over the store, billing engine and backups.

Commands:
- migrate: Run pending schema migrations
- migrate-status: Show schema version and applied migrations
- invoice-number: Show the next invoice number
- unbilled: List unbilled time entries
- invoice: Show an invoice with its entries
- finalize / cancel: Invoice lifecycle
- backup / backups / restore: Store file backups
- run: Start the application with periodic backups until interrupted
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from hourbook.app import Application
from hourbook.config import get_config
from hourbook.core.logging import configure_logging
from hourbook.db.connection import Store
from hourbook.errors import BackupError, ConflictError, MigrationError, NotFoundError, ValidationError
from hourbook.migrations.runner import MigrationRunner
from hourbook.models import Invoice

app = typer.Typer(
    name="hourbook",
    help="Hourbook - time tracking and invoicing",
    no_args_is_help=True,
)

console = Console()

USER_ERRORS = (ValidationError, ConflictError, NotFoundError, BackupError)


def _run(coro):
    """Run a coroutine, turning expected failures into a non-zero exit."""
    try:
        return asyncio.run(coro)
    except MigrationError as e:
        console.print(f"[bold red]✗[/bold red] Migration {e.version} ({e.name}) failed: {e}")
        raise typer.Exit(1)
    except USER_ERRORS as e:
        console.print(f"[bold red]✗[/bold red] {e.message}")
        raise typer.Exit(1)


def _print_invoice(invoice: Invoice) -> None:
    console.print(f"[bold]{invoice.invoice_number}[/bold] ({invoice.status.value})")
    console.print(f"  Date: {invoice.invoice_date}")
    console.print(f"  Total: {invoice.total_amount}  Tax: {invoice.tax_amount}")
    if invoice.service_period_start or invoice.service_period_end:
        console.print(
            f"  Service period: {invoice.service_period_start} - {invoice.service_period_end}"
        )
    if invoice.cancellation_reason:
        console.print(f"  Cancelled: {invoice.cancellation_reason}")


@app.command()
def migrate():
    """Run pending schema migrations."""
    config = get_config()
    configure_logging(
        config.log_level,
        json_logs=config.log_format == "json",
        log_file=config.log_file,
    )
    console.print(f"[bold]Migrating store:[/bold] {config.db.url}")

    async def _migrate():
        store = Store(config.db)
        try:
            return await MigrationRunner(store).run_pending()
        finally:
            await store.dispose()

    result = _run(_migrate())
    console.print(
        f"[bold green]✓[/bold green] Applied {result.applied_count} migration(s), "
        f"schema version {result.current_version}"
    )


@app.command(name="migrate-status")
def migrate_status():
    """Show current and latest schema version and the migration ledger."""
    config = get_config()

    async def _status():
        store = Store(config.db)
        try:
            runner = MigrationRunner(store)
            current = await runner.current_version()
            applied = await runner.applied_migrations()
            return runner.latest_version, current, applied
        finally:
            await store.dispose()

    latest, current, applied = _run(_status())

    console.print(f"Current version: [cyan]{current}[/cyan]  Latest: [cyan]{latest}[/cyan]")
    if current < latest:
        console.print(f"[yellow]⚠[/yellow] {latest - current} migration(s) pending")

    table = Table(title="Applied migrations")
    table.add_column("Version", justify="right", style="cyan")
    table.add_column("Name")
    table.add_column("Applied at", style="dim")
    for migration in applied:
        table.add_row(str(migration.version), migration.name, migration.applied_at)
    console.print(table)


@app.command(name="invoice-number")
def invoice_number():
    """Show the number the next invoice would receive."""

    async def _next():
        async with await Application.open() as application:
            return await application.billing.generate_next_invoice_number()

    console.print(_run(_next()))


@app.command()
def unbilled():
    """List time entries not attached to any invoice."""

    async def _unbilled():
        async with await Application.open() as application:
            return await application.billing.get_unbilled_time_entries()

    entries = _run(_unbilled())
    if not entries:
        console.print("[yellow]No unbilled time entries[/yellow]")
        return

    table = Table(title="Unbilled time entries")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Date")
    table.add_column("Project")
    table.add_column("Minutes", justify="right")
    table.add_column("Rate", justify="right", style="green")
    table.add_column("Description", style="dim")
    for entry in entries:
        table.add_row(
            str(entry.id),
            entry.date.isoformat(),
            entry.project_name or "",
            str(entry.duration_minutes),
            str(entry.hourly_rate) if entry.hourly_rate is not None else "-",
            entry.description or "",
        )
    console.print(table)


@app.command()
def invoice(invoice_id: int = typer.Argument(..., help="Invoice ID")):
    """Show an invoice with its time entries."""

    async def _show():
        async with await Application.open() as application:
            return await application.billing.get_invoice_with_entries(invoice_id)

    result = _run(_show())
    _print_invoice(result)

    table = Table(title="Entries")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Date")
    table.add_column("Project")
    table.add_column("Minutes", justify="right")
    table.add_column("Status")
    for entry in result.entries:
        table.add_row(
            str(entry.id),
            entry.date.isoformat(),
            entry.project_name or "",
            str(entry.duration_minutes),
            entry.billing_status.value,
        )
    console.print(table)


@app.command()
def finalize(invoice_id: int = typer.Argument(..., help="Invoice ID")):
    """Finalize a draft invoice and lock its entries."""

    async def _finalize():
        async with await Application.open() as application:
            return await application.billing.finalize_invoice(invoice_id)

    _print_invoice(_run(_finalize()))
    console.print("[bold green]✓[/bold green] Invoice finalized")


@app.command()
def cancel(
    invoice_id: int = typer.Argument(..., help="Invoice ID"),
    reason: str = typer.Option(..., "--reason", "-r", help="Cancellation reason"),
):
    """Cancel a draft or finalized invoice."""

    async def _cancel():
        async with await Application.open() as application:
            return await application.billing.cancel_invoice(invoice_id, reason)

    _print_invoice(_run(_cancel()))
    console.print("[bold green]✓[/bold green] Invoice cancelled")


def _require_backups(application: Application):
    if application.backups is None or application.scheduler is None:
        raise BackupError("In-memory stores cannot be backed up")
    return application.backups, application.scheduler


@app.command()
def backup(
    directory: Path | None = typer.Option(None, "--dir", help="Backup directory"),
):
    """Create a backup of the store now."""

    async def _backup():
        async with await Application.open() as application:
            manager, scheduler = _require_backups(application)
            target = directory or await scheduler.backup_directory()
            if target is None:
                raise BackupError("No backup directory configured (BACKUP_DIRECTORY or --dir)")
            return await manager.create_backup(target)

    path = _run(_backup())
    console.print(f"[bold green]✓[/bold green] Backup written to {path}")


@app.command()
def backups(
    directory: Path | None = typer.Option(None, "--dir", help="Backup directory"),
):
    """List backups, newest first."""

    async def _list():
        async with await Application.open() as application:
            manager, scheduler = _require_backups(application)
            target = directory or await scheduler.backup_directory()
            if target is None:
                raise BackupError("No backup directory configured (BACKUP_DIRECTORY or --dir)")
            return await manager.list_backups(target)

    files = _run(_list())
    if not files:
        console.print("[yellow]No backups found[/yellow]")
        return

    table = Table(title="Backups")
    table.add_column("File", style="cyan")
    table.add_column("Modified")
    table.add_column("Size", justify="right", style="green")
    for item in files:
        table.add_row(item.filename, item.modified.strftime("%Y-%m-%d %H:%M:%S"), str(item.size))
    console.print(table)


@app.command()
def restore(
    filename: str = typer.Argument(..., help="Backup file name"),
    directory: Path | None = typer.Option(None, "--dir", help="Backup directory"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Replace the store with a backup (current file is kept as pre-restore copy)."""
    if not yes and not typer.confirm(f"Replace the current store with {filename}?"):
        console.print("[yellow]Restore cancelled[/yellow]")
        return

    async def _restore():
        async with await Application.open() as application:
            manager, scheduler = _require_backups(application)
            target = directory or await scheduler.backup_directory()
            if target is None:
                raise BackupError("No backup directory configured (BACKUP_DIRECTORY or --dir)")
            safety_copy = await manager.restore_backup(target, filename)
            # The restored file may predate the latest migrations
            result = await application.runner.run_pending()
            return safety_copy, result

    safety_copy, result = _run(_restore())
    console.print(f"[bold green]✓[/bold green] Restored {filename}")
    console.print(f"  Previous store saved as {safety_copy}")
    if result.applied_count:
        console.print(f"  Applied {result.applied_count} migration(s) to the restored store")


@app.command()
def run():
    """Start the application and back up periodically until interrupted."""

    async def _serve():
        application = await Application.open()
        application.start_background()
        console.print(
            f"[bold green]✓[/bold green] Hourbook running "
            f"(schema version {application.migration_result.current_version}). Ctrl+C to stop."
        )
        try:
            await asyncio.Event().wait()
        finally:
            await application.close()

    try:
        _run(_serve())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
