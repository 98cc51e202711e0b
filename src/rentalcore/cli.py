"""Typer CLI for RentalCore."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="rentalcore", help="RentalCore: compliance ledger and booking engine")
console = Console()


async def _open_db():
    from rentalcore.deps import get_db, get_retention_manager

    db = get_db()
    await db.init()
    await db.create_all()
    async with db.get_session() as session:
        await get_retention_manager().seed_default_policies(session)
    return db


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the RentalCore API server."""
    import uvicorn
    from rentalcore.app import create_app
    from rentalcore.common.config import get_settings
    from rentalcore.common.logging import setup_logging

    setup_logging(get_settings().log_level)
    console.print(f"[bold green]Starting RentalCore on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command("verify-chain")
def verify_chain():
    """Walk the audit chain and recompute every hash."""
    from rentalcore.deps import get_audit_logger

    async def run():
        db = await _open_db()
        try:
            return await get_audit_logger().verify_chain_integrity()
        finally:
            await db.close()

    result = asyncio.run(run())
    if result.valid:
        console.print(
            f"[bold green]INTACT[/bold green] - {result.events_checked} events checked"
        )
    else:
        console.print(
            f"[bold red]BROKEN[/bold red] at event {result.break_at}: {result.reason}"
        )
        raise typer.Exit(1)


@app.command()
def cleanup():
    """Run GDPR consent cleanup, retention cleanup and archive purge."""
    from rentalcore.common.exceptions import IntegrityBreachError
    from rentalcore.deps import get_compliance_service

    async def run():
        db = await _open_db()
        try:
            return await get_compliance_service().run_retention_cleanup()
        finally:
            await db.close()

    try:
        report = asyncio.run(run())
    except IntegrityBreachError as e:
        console.print(f"[bold red]{e.code}[/bold red] - {e.message}")
        raise typer.Exit(2)

    table = Table(title="Retention cleanup")
    table.add_column("Step")
    table.add_column("Count", justify="right")
    for step, count in report.summary().items():
        table.add_row(step, str(count))
    console.print(table)


@app.command("validate-retention")
def validate_retention():
    """List retention compliance issues without remediating them."""
    from rentalcore.deps import get_retention_manager

    async def run():
        db = await _open_db()
        try:
            async with db.get_session() as session:
                return await get_retention_manager().validate_compliance(session)
        finally:
            await db.close()

    validation = asyncio.run(run())
    if validation.is_compliant:
        console.print("[bold green]COMPLIANT[/bold green]")
        return

    table = Table(title=f"Compliance level: {validation.compliance_level}")
    table.add_column("Severity")
    table.add_column("Type")
    table.add_column("Description")
    for issue in validation.issues:
        table.add_row(issue.severity, issue.type, issue.description)
    console.print(table)
    raise typer.Exit(1)


@app.command("export-public-key")
def export_public_key():
    """Print the signing public key as PEM (creates the key pair if missing)."""
    from rentalcore.deps import get_signature_manager

    console.print(get_signature_manager().export_public_key(), end="")


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check RentalCore server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] - v{data['version']}")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
