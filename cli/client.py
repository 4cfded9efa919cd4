from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx
import typer

from cli.config import CLIConfig

Payload = Union[Dict[str, Any], List[Dict[str, Any]]]


class ApiClient:
    """Minimal HTTP client for the alert service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def load_payload(path: Path) -> Payload:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise typer.BadParameter(f"File {path} is not valid JSON: {exc}") from exc
        if not isinstance(payload, (dict, list)):
            raise typer.BadParameter(f"File {path} must hold a reading object or a list of readings.")
        return payload

    def submit(self, payload: Payload, evaluate_only: bool = False) -> Dict[str, Any]:
        if isinstance(payload, list):
            path = "/readings/batch"
        else:
            path = "/readings/evaluate" if evaluate_only else "/readings"
        try:
            response = self._client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            self._handle_transport_error(exc)
        return response.json()

    def list_alerts(self, hours: int, sensor_client_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"hours": hours}
        if sensor_client_id:
            params["sensor_client_id"] = sensor_client_id
        try:
            response = self._client.get("/alerts", params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            self._handle_transport_error(exc)
        return response.json()

    def _handle_transport_error(self, exc: httpx.TransportError) -> None:
        typer.secho(
            f"Could not reach {self._config.base_url}: {exc}",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: Any = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except (ValueError, AttributeError):
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
