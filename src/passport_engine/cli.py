"""Typer CLI for Passport-Engine."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="passport", help="Passport-Engine: trust passport backend")
console = Console()


async def _with_db(fn):
    from passport_engine.deps import get_db

    db = get_db()
    await db.init()
    await db.create_all()
    try:
        return await fn(db)
    finally:
        await db.close()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the Passport-Engine API server."""
    import uvicorn
    from passport_engine.app import create_app

    console.print(f"[bold green]Starting Passport-Engine on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def recalculate(
    user: str = typer.Option(None, "--user", help="Recalculate one user id only"),
    period: str = typer.Option(None, help="ISO week key for a batch run, e.g. 2026-W42"),
):
    """Recalculate trust scores for one user, or for everyone."""
    from passport_engine.deps import get_trustscore_service
    from passport_engine.trustscore.models import ScoreTrigger

    svc = get_trustscore_service()

    async def run(db):
        if user:
            async with db.get_session() as session:
                snapshot = await svc.recalculate(session, user, ScoreTrigger.MANUAL)
                return None if snapshot is None else (snapshot.total, snapshot.label)
        return await svc.run_weekly(db, period_key=period)

    result = asyncio.run(_with_db(run))
    if user:
        if result is None:
            console.print("[yellow]Skipped: a calculation is already running[/yellow]")
        else:
            console.print(f"[bold]{result[0]}[/bold] ({result[1]})")
        return

    table = Table(title="Trust score run")
    table.add_column("Outcome")
    table.add_column("Accounts", justify="right")
    for outcome, count in result.items():
        table.add_row(outcome, str(count))
    console.print(table)
    if result["failed"]:
        raise typer.Exit(1)


@app.command()
def evaluate(user: str = typer.Argument(..., help="User id to evaluate")):
    """Run the risk detectors for one user."""
    from passport_engine.deps import get_risk_service

    async def run(db):
        async with db.get_session() as session:
            return await get_risk_service().evaluate(session, user)

    assessment = asyncio.run(_with_db(run))
    console.print(
        f"Risk score [bold]{assessment.score}[/bold], status {assessment.account_status}, "
        f"{len(assessment.new_signals)} new signal(s)"
    )
    for signal in assessment.new_signals:
        console.print(f"  {signal.signal_type} (severity {signal.severity}): {signal.message}")


@app.command("purge-otp")
def purge_otp():
    """Delete expired one-time codes and request windows."""
    from passport_engine.deps import get_otp_service

    async def run(db):
        async with db.get_session() as session:
            return await get_otp_service().purge_expired(session)

    counts = asyncio.run(_with_db(run))
    console.print(f"Purged {counts['codes']} code(s) and {counts['windows']} window(s)")


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check Passport-Engine server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] — v{data['version']}")
    except (httpx.HTTPError, ValueError, KeyError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
