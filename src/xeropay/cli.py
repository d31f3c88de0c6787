"""
xeropay CLI — command-line interface.

Usage:
    xeropay serve --config xeropay.yaml
    xeropay status
    xeropay payments STU-1002 --json
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from xeropay import __version__
from xeropay.config import XeroPayConfig
from xeropay.errors import XeroPayError
from xeropay.logging_config import configure_logging
from xeropay.server import build_services

app = typer.Typer(
    name="xeropay",
    help="Xero payments lookup on a single offline OAuth2 session",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]xeropay[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """xeropay — authorize once, look up payments forever."""


def _fail(exc: XeroPayError) -> None:
    console.print(f"[red]Error:[/red] {exc.message}")
    raise typer.Exit(code=1)


@app.command()
def serve(
    config: str = typer.Option("xeropay.yaml", "--config", "-c", help="Path to config file"),
    host: str = typer.Option("0.0.0.0", "--host", help="Interface to bind"),
    port: int = typer.Option(None, "--port", "-p", help="Port (defaults to config)"),
) -> None:
    """Run the HTTP server."""
    import uvicorn

    from xeropay.server import create_app

    cfg = XeroPayConfig.load(config, port=port)
    console.print(f"Redirect URL: [cyan]{cfg.effective_redirect_url}[/cyan]")
    uvicorn.run(create_app(cfg), host=host, port=cfg.port, log_config=None)


@app.command()
def status(
    config: str = typer.Option("xeropay.yaml", "--config", "-c", help="Path to config file"),
) -> None:
    """Show the stored Xero session (never prints tokens)."""
    cfg = XeroPayConfig.load(config)
    configure_logging(cfg.log_level)
    services = build_services(cfg)

    try:
        info = asyncio.run(services.manager.status())
    except XeroPayError as e:
        _fail(e)
        return

    table = Table(title="Xero session", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Tenant", f"{info['tenantName'] or '-'} ({info['tenantId']})")
    table.add_row("Connected tenants", str(info["tenantCount"]))
    expires = info["expiresIn"]
    table.add_row(
        "Access token",
        f"[green]{expires}s left[/green]" if expires > 0 else f"[yellow]expired {-expires}s ago[/yellow]",
    )
    table.add_row("Refresh due", "yes" if info["refreshDue"] else "no")
    table.add_row("Scope", info["scope"] or "-")
    console.print(table)


@app.command()
def payments(
    student_id: str = typer.Argument(..., help="Contact Account Number"),
    config: str = typer.Option("xeropay.yaml", "--config", "-c", help="Path to config file"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Look up payments for a student id."""
    cfg = XeroPayConfig.load(config)
    configure_logging(cfg.log_level)
    services = build_services(cfg)

    async def _run() -> list[dict[str, Any]]:
        try:
            return await services.lookup.payments_for_account_number(student_id)
        finally:
            await services.provider.close()

    try:
        result = asyncio.run(_run())
    except XeroPayError as e:
        _fail(e)
        return

    if as_json:
        console.print_json(json.dumps(result))
        return

    table = Table(title=f"Payments for {student_id}")
    table.add_column("Date")
    table.add_column("Invoice")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    for p in result:
        invoice = p.get("Invoice") or {}
        table.add_row(
            str(p.get("Date", "")),
            str(invoice.get("InvoiceNumber", "")),
            f"{float(p.get('Amount') or 0):,.2f}",
            str(p.get("Status", "")),
        )
    console.print(table)
    console.print(f"[dim]{len(result)} payment(s)[/dim]")


if __name__ == "__main__":
    app()
