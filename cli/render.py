from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_result(payload: Dict[str, Any]) -> None:
    echo_heading("Evaluation Result")
    echo_key_values(
        [
            ("triggered", payload.get("triggered")),
            ("rule_code", payload.get("rule_code")),
            ("rule_name", payload.get("rule_name")),
            ("evaluation_ms", payload.get("evaluation_ms")),
        ]
    )
    if payload.get("triggered"):
        typer.secho(payload.get("message", ""), fg=typer.colors.YELLOW)
    else:
        typer.echo("No alert raised.")


def render_batch(payload: Dict[str, Any]) -> None:
    items = payload.get("items") or []
    echo_heading(f"Batch Result ({len(items)} readings)")
    for item in items:
        prefix = f"  - {item.get('sensor_client_id')} @ {item.get('timestamp')}"
        if item.get("error"):
            typer.secho(f"{prefix}: FAILED {item['error']}", fg=typer.colors.RED)
            continue
        result = item.get("result") or {}
        if result.get("triggered"):
            typer.echo(f"{prefix}: rule {result.get('rule_code')} {result.get('rule_name')}")
        else:
            typer.echo(f"{prefix}: no alert")


def render_alerts(alerts: List[Dict[str, Any]]) -> None:
    echo_heading("Alerts")
    if not alerts:
        typer.echo("No alerts recorded.")
        return
    for alert in alerts:
        typer.echo(
            f"  - [{alert.get('time')}] sensor={alert.get('sensor_client_id')} "
            f"field={alert.get('field_id')}: {alert.get('message')}"
        )
