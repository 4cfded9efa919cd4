from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_alerts, render_batch, render_result


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the agronomic alert service.",
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
        help="Alert service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Request timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("submit")
def submit_command(
    ctx: typer.Context,
    file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="JSON file with a reading or a list of readings."
    ),
    evaluate_only: bool = typer.Option(
        False,
        "--evaluate-only/--store",
        help="Evaluate rules without storing the reading (single readings only).",
    ),
) -> None:
    """Submit sensor readings and show which rule, if any, fired."""
    state = _get_state(ctx)
    payload = state.client.load_payload(file)
    typer.echo(f"Submitting {file} to {state.config.base_url} ...")
    response = state.client.submit(payload, evaluate_only=evaluate_only)
    typer.echo()
    if isinstance(payload, list):
        render_batch(response)
    else:
        render_result(response)


@app.command("alerts")
def alerts_command(
    ctx: typer.Context,
    hours: Optional[int] = typer.Option(
        None, "--hours", min=1, help="How far back to look (defaults to CLI_ALERT_HOURS or 24)."
    ),
    sensor: Optional[str] = typer.Option(None, "--sensor", help="Only alerts for this sensor client id."),
) -> None:
    """List recently written alerts."""
    state = _get_state(ctx)
    alerts = state.client.list_alerts(
        hours=hours or state.config.alert_hours, sensor_client_id=sensor
    )
    render_alerts(alerts)
