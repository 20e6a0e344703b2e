#!/usr/bin/env python3
"""
filerelay CLI

Command-line client for the coordinator's HTTP API.

Usage:
    filerelay list-clients                   # Show connected agents
    filerelay download -c CLIENT [-f FILE]   # Request a file from an agent
    filerelay status REQUEST_ID              # Check a transfer
    filerelay list-downloads                 # Show all transfers
"""

import logging
import sys
from datetime import datetime

import click
import httpx
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from filerelay import __version__
from filerelay.api.routes import DEFAULT_FILE_NAME
from filerelay.config import settings_from_env

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def _when(value: str | None) -> str:
    if not value:
        return "-"
    return datetime.fromisoformat(value).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


def _api_error(e: httpx.HTTPError) -> str:
    """Extract the coordinator's error text from a failed call."""
    if isinstance(e, httpx.HTTPStatusError):
        try:
            return e.response.json().get("error", str(e))
        except ValueError:
            return str(e)
    return str(e)


@click.group()
@click.version_option(__version__, prog_name="filerelay")
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--api-url', default=None, help='Coordinator HTTP API base URL')
@click.pass_context
def cli(ctx, verbose, api_url):
    """File download server CLI."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    if 'client' not in ctx.obj:
        base_url = api_url or settings_from_env().api_url
        logger.debug(f"API: {base_url}")
        ctx.obj['client'] = httpx.Client(base_url=base_url, timeout=10.0)
        ctx.call_on_close(ctx.obj['client'].close)


@cli.command('list-clients')
@click.pass_context
def list_clients(ctx):
    """Show connected clients."""
    client: httpx.Client = ctx.obj['client']
    try:
        res = client.get("/clients")
        res.raise_for_status()
    except httpx.HTTPError as e:
        _fail(_api_error(e))

    data = res.json()
    if data["count"] == 0:
        console.print("No clients connected")
        return

    table = Table(title=f"Connected clients ({data['count']})")
    table.add_column("ID", style="cyan")
    table.add_column("Connected")
    table.add_column("Last ping")
    for c in data["clients"]:
        table.add_row(c["id"], _when(c["connectedAt"]), _when(c["lastPing"]))
    console.print(table)


@cli.command()
@click.option('-c', '--client', 'client_id', required=True, help='Client ID')
@click.option('-f', '--file', 'file_name', default=DEFAULT_FILE_NAME, show_default=True,
              help='File name')
@click.pass_context
def download(ctx, client_id, file_name):
    """Download file from client."""
    client: httpx.Client = ctx.obj['client']
    console.print(f"Requesting download from: [cyan]{client_id}[/cyan]")
    console.print(f"File: [cyan]{file_name}[/cyan]\n")

    try:
        res = client.post("/download", json={"clientId": client_id, "fileName": file_name})
        res.raise_for_status()
    except httpx.HTTPStatusError as e:
        available = []
        try:
            available = e.response.json().get("available") or []
        except ValueError:
            pass
        if available:
            console.print(f"\nAvailable: {', '.join(available)}")
        _fail(_api_error(e))
    except httpx.HTTPError as e:
        _fail(_api_error(e))

    data = res.json()
    console.print(f"[green]✓[/green] {data['message']}")
    console.print(f"Request ID: [bold]{data['requestId']}[/bold]\n")
    console.print(f"[dim]Check status: filerelay status {data['requestId']}[/dim]")


@cli.command()
@click.argument('request_id')
@click.pass_context
def status(ctx, request_id):
    """Check download status."""
    client: httpx.Client = ctx.obj['client']
    try:
        res = client.get(f"/download/{request_id}")
        res.raise_for_status()
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 404:
            _fail("Download not found")
        _fail(_api_error(e))
    except httpx.HTTPError as e:
        _fail(_api_error(e))

    dl = res.json()
    color = {"completed": "green", "failed": "red"}.get(dl["status"], "yellow")
    lines = [
        f"Request: [cyan]{dl['requestId']}[/cyan]",
        f"Client: {dl['clientId']}",
        f"File: {dl['fileName']}",
        f"Status: [{color}]{dl['status']}[/{color}]",
        f"Bytes: {dl.get('bytesReceived') or 0:,}",
    ]
    if dl.get("filePath"):
        lines.append(f"Path: [blue]{dl['filePath']}[/blue]")
    if dl.get("startedAt"):
        lines.append(f"Started: {_when(dl['startedAt'])}")
    if dl.get("completedAt"):
        lines.append(f"Completed: {_when(dl['completedAt'])}")
    if dl.get("error"):
        lines.append(f"Error: [red]{dl['error']}[/red]")

    console.print(Panel.fit("\n".join(lines), title="Download Status"))


@cli.command('list-downloads')
@click.pass_context
def list_downloads(ctx):
    """Show all downloads."""
    client: httpx.Client = ctx.obj['client']
    try:
        res = client.get("/downloads")
        res.raise_for_status()
    except httpx.HTTPError as e:
        _fail(_api_error(e))

    data = res.json()
    if data["count"] == 0:
        console.print("No downloads")
        return

    table = Table(title=f"Downloads ({data['count']})")
    table.add_column("Request", style="cyan", no_wrap=True)
    table.add_column("Client")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Bytes", justify="right")
    table.add_column("Path")
    for dl in data["downloads"]:
        table.add_row(
            dl["requestId"],
            dl["clientId"],
            dl["fileName"],
            dl["status"],
            f"{dl.get('bytesReceived') or 0:,}",
            dl.get("filePath") or "-",
        )
    console.print(table)


if __name__ == '__main__':
    cli()
