"""Command line entry point: run the proxy and inspect/edit its config file."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .config_loader import load_proxy_config, mask_secret, update_config_file
from .logging_utils import configure_logging

app = typer.Typer(help="OpenAI-compatible pseudo-streaming chat proxy")
console = Console()


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address (overrides config)"),
    port: Optional[int] = typer.Option(None, help="Bind port (overrides config)"),
    log_level: str = typer.Option("info", help="Python logging level"),
    log_dir: Optional[Path] = typer.Option(None, help="Directory for chat_proxy.log"),
):
    """Start the HTTP server."""
    import uvicorn

    cfg = load_proxy_config()
    level = getattr(logging, log_level.upper(), logging.INFO)
    log_path = configure_logging(
        "chat_proxy", level=level, log_dir=log_dir or Path(cfg.log_dir)
    )
    console.print(f"[green]Logging to[/green] {log_path}")

    from .app import app as fastapi_app

    uvicorn.run(
        fastapi_app,
        host=host or cfg.host,
        port=port or cfg.port,
        log_level=log_level.lower(),
    )


@app.command("show-config")
def show_config(
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON instead of a table"),
):
    """Print the effective runtime configuration (env > file > defaults)."""
    cfg = load_proxy_config()
    data = asdict(cfg)
    data["api_master_key"] = mask_secret(data["api_master_key"])
    if as_json:
        typer.echo(json.dumps(data, indent=2, ensure_ascii=False))
        return
    table = Table(title=f"Chat proxy config ({cfg.config_file_path})")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, json.dumps(value, ensure_ascii=False))
    console.print(table)


@app.command("set-config")
def set_config(
    assignments: List[str] = typer.Argument(..., help="KEY=VALUE pairs to persist"),
):
    """Write values into the config file; takes effect on next start."""
    updates = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            console.print(f"[red]Expected KEY=VALUE, got {item!r}[/red]")
            raise typer.Exit(code=2)
        updates[key.strip()] = value
    try:
        cfg = update_config_file(updates)
    except KeyError as exc:
        console.print(f"[red]{exc.args[0]}[/red]")
        raise typer.Exit(code=1)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Updated[/green] {cfg.config_file_path}")


if __name__ == "__main__":  # pragma: no cover
    app()
