from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import typer
import uvicorn

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_cooldowns, render_sample, render_samples


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for operating the Solaris telemetry service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="HTTP timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("samples")
def samples_command(
    ctx: typer.Context,
    start: Optional[str] = typer.Option(None, "--start", help="First day to include (YYYY-MM-DD)."),
    end: Optional[str] = typer.Option(None, "--end", help="Last day to include (YYYY-MM-DD)."),
    sort_by: Optional[str] = typer.Option(None, "--sort-by", help="Field to sort by."),
    order: Optional[str] = typer.Option(None, "--order", help="asc or desc."),
    limit: Optional[int] = typer.Option(20, "--limit", min=1, help="Maximum rows to show."),
) -> None:
    """List stored samples."""
    state = _get_state(ctx)
    samples = state.client.list_samples(
        start=start, end=end, sort_by=sort_by, order=order, limit=limit
    )
    render_samples(samples)


@app.command("latest")
def latest_command(ctx: typer.Context) -> None:
    """Show the most recent sample."""
    state = _get_state(ctx)
    sample = state.client.latest_sample()
    if sample is None:
        typer.secho("No samples have been recorded yet.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)
    render_sample(sample)


@app.command("cooldowns")
def cooldowns_command(ctx: typer.Context) -> None:
    """Show when each alert kind last fired."""
    state = _get_state(ctx)
    render_cooldowns(state.client.cooldowns())


@app.command("serve")
def serve_command(
    host: str = typer.Option("0.0.0.0", "--host", help="Interface to bind."),
    port: int = typer.Option(8000, "--port", help="Port to listen on."),
) -> None:
    """Run the telemetry server."""
    uvicorn.run("app.main:app", host=host, port=port)
