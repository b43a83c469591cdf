"""
CLI entrypoint for Recap.

Commands:
- serve: run the FastAPI backend.
- sweep: delete inactive users now instead of waiting for the nightly run.
"""

from datetime import datetime, timedelta, timezone

import typer
from pymongo.errors import PyMongoError
from rich.console import Console
import uvicorn

from .config import ConfigError, load_config
from .store import Store
from .sweep import MAX_INACTIVE, sweep_inactive_users


app = typer.Typer(help="Recap: Spotify listening summaries backend.")


def _load_or_exit(console: Console):
    try:
        return load_config()
    except ConfigError as exc:
        console.print(f"[bold red]Configuration error:[/bold red] {exc}")
        raise typer.Exit(1)


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind the Recap API server to."),
    port: int = typer.Option(8888, help="Port to bind the Recap API server to."),
    reload: bool = typer.Option(False, help="Enable auto-reload (development only)."),
) -> None:
    """
    Run the Recap FastAPI backend.

    Example:
        recap serve --port 8888
    """
    _load_or_exit(Console())
    uvicorn.run(
        "recap.api:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command("sweep")
def sweep(
    days: int = typer.Option(
        MAX_INACTIVE.days,
        "--days",
        min=1,
        help="Delete users inactive for more than this many days.",
    ),
) -> None:
    """Run the inactive-user cleanup once."""
    console = Console()
    cfg = _load_or_exit(console)
    store = Store.from_config(cfg.mongo)
    try:
        deleted = sweep_inactive_users(store, datetime.now(timezone.utc), timedelta(days=days))
    except PyMongoError as exc:
        console.print(f"[bold red]Database error:[/bold red] {exc}")
        raise typer.Exit(1)
    finally:
        store.close()

    console.print(f"[bold green]Removed {deleted} inactive users.[/bold green]")


if __name__ == "__main__":
    app()
