"""Typer CLI for PharmaTrace."""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from pharmatrace.common.logging import get_logger

app = typer.Typer(name="pharmatrace", help="PharmaTrace: ledger sync and recall engine")
console = Console()
logger = get_logger("cli")


async def _open_db():
    from pharmatrace.deps import get_db

    db = get_db()
    await db.init()
    await db.create_all()
    return db


def _setup_logging() -> None:
    from pharmatrace.common.config import get_settings
    from pharmatrace.common.logging import setup_logging

    setup_logging(get_settings().log_level)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the PharmaTrace API server."""
    import uvicorn
    from pharmatrace.app import create_app

    console.print(f"[bold green]Starting PharmaTrace on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def worker():
    """Run recovery, then poll the chain until interrupted."""
    from pharmatrace.deps import get_sync_worker

    _setup_logging()

    async def _run() -> None:
        db = await _open_db()
        sync_worker = get_sync_worker()
        try:
            await sync_worker.run_forever()
        finally:
            await sync_worker.reader.close()
            await db.close()

    console.print("[bold green]Starting sync worker[/bold green]")
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[yellow]Sync worker stopped[/yellow]")


@app.command()
def recover():
    """Replay missed blocks up to the current head and exit."""
    from pharmatrace.common.exceptions import PharmaTraceError
    from pharmatrace.deps import get_sync_worker

    _setup_logging()

    async def _run():
        db = await _open_db()
        sync_worker = get_sync_worker()
        try:
            return await sync_worker.recovery.recover()
        finally:
            await sync_worker.reader.close()
            await db.close()

    try:
        summary = asyncio.run(_run())
    except PharmaTraceError as e:
        console.print(f"[bold red]{e.code}[/bold red] {e.message}")
        raise typer.Exit(1)

    if summary.from_block is None:
        console.print(f"[bold green]Up to date[/bold green] on chain {summary.chain_id}")
        return
    console.print(
        f"[bold green]Recovered[/bold green] blocks {summary.from_block}-{summary.to_block} "
        f"on chain {summary.chain_id}: {summary.events_dispatched} events in "
        f"{summary.windows} windows"
        + (" (chain reset handled)" if summary.reset_handled else "")
    )


@app.command("resync-tx")
def resync_tx(
    tx_hash: str = typer.Argument(..., help="Transaction hash (0x...)"),
):
    """Force-process every contract event in one transaction."""
    from pharmatrace.common.exceptions import PharmaTraceError
    from pharmatrace.deps import get_sync_worker

    _setup_logging()

    async def _run():
        db = await _open_db()
        sync_worker = get_sync_worker()
        try:
            return await sync_worker.resync_transaction(tx_hash)
        finally:
            await sync_worker.reader.close()
            await db.close()

    try:
        results = asyncio.run(_run())
    except PharmaTraceError as e:
        console.print(f"[bold red]{e.code}[/bold red] {e.message}")
        raise typer.Exit(1)

    table = Table(title=f"Transaction {tx_hash}")
    table.add_column("Event")
    table.add_column("Key")
    table.add_column("Outcome")
    for r in results:
        table.add_row(r.kind.value, r.event_key, r.outcome.value)
    console.print(table)


@app.command("reset-cursor")
def reset_cursor(
    block: Optional[int] = typer.Option(
        None, help="Block to rewind to (default: deployment block of the stored chain)",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Rewind the sync cursor so the next recovery replays from ``block``."""
    from pharmatrace.common.config import get_settings
    from pharmatrace.deps import get_cursor_store

    async def _run() -> Optional[int]:
        db = await _open_db()
        try:
            store = get_cursor_store()
            cursor = await store.get()
            if cursor is None:
                return None
            target = block
            if target is None:
                target = get_settings().deployment_block_for(cursor.chain_id)
            await store.reset(target)
            return target
        finally:
            await db.close()

    if not yes:
        typer.confirm("Rewind the sync cursor? Already processed events stay recorded.", abort=True)
    target = asyncio.run(_run())
    if target is None:
        console.print("[yellow]No sync cursor stored; nothing to reset[/yellow]")
        raise typer.Exit(1)
    logger.warning("Sync cursor reset to block %s from the CLI", target)
    console.print(f"[bold green]Sync cursor reset to block {target}[/bold green]")


@app.command()
def trace(
    batch_id: int = typer.Argument(..., help="Ledger batch id"),
):
    """Print the upstream and downstream lineage of a batch."""
    from pharmatrace.common.exceptions import BatchNotFoundError
    from pharmatrace.deps import get_trace_service

    async def _run():
        db = await _open_db()
        try:
            async with db.get_session() as session:
                return await get_trace_service().full_trace(session, batch_id)
        finally:
            await db.close()

    try:
        result = asyncio.run(_run())
    except BatchNotFoundError as e:
        console.print(f"[bold red]Not found:[/bold red] {e.message}")
        raise typer.Exit(1)

    table = Table(title=f"Batch #{batch_id} ({result.batch.product_name or 'unnamed'})")
    table.add_column("Direction")
    table.add_column("Depth", justify="right")
    table.add_column("Batch", justify="right")
    table.add_column("Owner")
    table.add_column("Status")
    for node in result.upstream.nodes:
        table.add_row("upstream", str(node.depth), f"#{node.batch.batch_id}", node.batch.owner, node.batch.status)
    table.add_row("[bold]self[/bold]", "0", f"#{result.batch.batch_id}", result.batch.owner, result.batch.status)
    for node in result.downstream.nodes:
        table.add_row("downstream", str(node.depth), f"#{node.batch.batch_id}", node.batch.owner, node.batch.status)
    console.print(table)
    for warning in result.warnings:
        console.print(f"[yellow]{warning}[/yellow]")


@app.command("process-alerts")
def process_alerts(
    limit: Optional[int] = typer.Option(None, help="Maximum alerts to attempt"),
):
    """Deliver pending alerts once."""
    from pharmatrace.deps import get_notification_service

    _setup_logging()

    async def _run():
        db = await _open_db()
        try:
            async with db.get_session() as session:
                return await get_notification_service().process_pending(session, limit=limit)
        finally:
            await db.close()

    result = asyncio.run(_run())
    console.print(
        f"Alerts: [bold green]{result.sent} sent[/bold green], "
        f"[bold red]{result.failed} failed[/bold red] of {result.total}"
    )


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check PharmaTrace server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] v{data['version']}")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
