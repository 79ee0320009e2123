"""Typer CLI for running and inspecting the chat gateway."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ..logging_utils import configure_logging
from . import config_loader
from .config import REDACTED, ProxyConfig

app = typer.Typer(help="Streaming chat gateway for OpenAI and Google LLM APIs")
config_app = typer.Typer(help="Inspect or create the gateway config file")
app.add_typer(config_app, name="config")

console = Console()


@app.command("serve")
def cmd_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Override listen host"),
    port: Optional[int] = typer.Option(None, "--port", help="Override listen port"),
    log_level: str = typer.Option("info", "--log-level", help="Python log level"),
    log_dir: Optional[Path] = typer.Option(
        None, "--log-dir", help="Directory for chat_proxy.log"
    ),
):  # pragma: no cover - starts a server
    """Run the gateway with uvicorn."""
    import uvicorn

    from .app import create_app

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level '{log_level}'")
    log_path = configure_logging("chat_proxy", level=level, log_dir=log_dir)

    cfg = ProxyConfig.load()
    if host:
        cfg.host = host
    if port:
        cfg.port = port
    if not cfg.api_key:
        logging.getLogger(__name__).info(
            "No fallback API key configured; requests must send x-api-key"
        )
    console.print(
        f"chatgate listening on http://{cfg.host}:{cfg.port} (log: {log_path})"
    )
    uvicorn.run(create_app(cfg), host=cfg.host, port=cfg.port, log_level=log_level)


@config_app.command("show")
def cmd_config_show():
    """Print the effective configuration with the API key masked."""
    cfg = ProxyConfig.load()
    table = Table(title="chatgate configuration", show_header=True, header_style="bold")
    table.add_column("Field")
    table.add_column("Value")
    for key, value in cfg.redacted().items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)

    overrides = config_loader.list_env_overrides()
    if overrides:
        env_table = Table(title="Environment overrides", header_style="bold")
        env_table.add_column("Variable")
        env_table.add_column("Value")
        for name, value in sorted(overrides.items()):
            if "KEY" in name:
                value = REDACTED
            env_table.add_row(name, value)
        console.print(env_table)


@config_app.command("init")
def cmd_config_init(
    path: Optional[Path] = typer.Option(
        None, "--path", help="Target file (defaults to CHAT_PROXY_CONFIG_FILE)"
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
):
    """Write a config file holding the built-in defaults."""
    target = Path(path) if path else config_loader.config_path()
    if target.exists() and not force:
        console.print(f"[yellow]{target} exists; pass --force to overwrite[/yellow]")
        raise typer.Exit(1)
    written = config_loader.write_config(ProxyConfig(), target)
    console.print(f"Wrote {written}")


def main():  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
