from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import typer
from typer.testing import CliRunner

from cli.app import app
from cli.client import ApiClient
from cli.config import load_config


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.submitted: List[tuple[Any, bool]] = []
        self.alert_queries: List[tuple[int, Optional[str]]] = []
        self.result_payload: Dict[str, Any] = {
            "triggered": True,
            "rule_code": 1,
            "rule_name": "drought",
            "message": "Drought alert for field field-1 (sensor sensor-1)",
            "evaluation_ms": 4.2,
        }
        self.alerts_payload: List[Dict[str, Any]] = [
            {
                "sensor_client_id": "sensor-1",
                "field_id": "field-1",
                "message": "Drought alert for field field-1 (sensor sensor-1)",
                "time": "2024-06-01T11:55:00Z",
            }
        ]
        self.closed = False

    load_payload = staticmethod(ApiClient.load_payload)

    def submit(self, payload, evaluate_only: bool = False) -> Dict[str, Any]:
        self.submitted.append((payload, evaluate_only))
        if isinstance(payload, list):
            return {
                "items": [
                    {
                        "sensor_client_id": "sensor-1",
                        "timestamp": "2024-06-01T11:55:00.000000000Z",
                        "result": self.result_payload,
                        "error": None,
                    },
                    {
                        "sensor_client_id": "sensor-2",
                        "timestamp": "2024-06-01T11:56:00.000000000Z",
                        "result": None,
                        "error": "MalformedReading: no usable soil_ph",
                    },
                ]
            }
        return self.result_payload

    def list_alerts(self, hours: int, sensor_client_id: Optional[str] = None) -> List[Dict[str, Any]]:
        self.alert_queries.append((hours, sensor_client_id))
        return self.alerts_payload

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _install_stub(monkeypatch, stub: StubClient) -> None:
    def factory(config):
        stub.config = config
        return stub

    monkeypatch.setattr("cli.app.ApiClient", factory)


def _write(tmp_path: Path, payload: Any) -> Path:
    path = tmp_path / "reading.json"
    path.write_text(json.dumps(payload))
    return path


def test_submit_single_reading(monkeypatch, runner: CliRunner, tmp_path) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)
    path = _write(tmp_path, {"SensorClientId": "sensor-1", "FieldId": "field-1"})

    result = runner.invoke(app, ["--base-url", "http://alerts:9000/", "submit", str(path)])

    assert result.exit_code == 0
    assert "Evaluation Result" in result.stdout
    assert "rule_name: drought" in result.stdout
    assert "Drought alert" in result.stdout
    assert stub.submitted == [({"SensorClientId": "sensor-1", "FieldId": "field-1"}, False)]
    assert stub.config.base_url == "http://alerts:9000"
    assert stub.closed is True


def test_submit_evaluate_only_without_alert(monkeypatch, runner: CliRunner, tmp_path) -> None:
    stub = StubClient(config=None)
    stub.result_payload = {
        "triggered": False,
        "rule_code": 0,
        "rule_name": None,
        "message": "",
        "evaluation_ms": 1.0,
    }
    _install_stub(monkeypatch, stub)
    path = _write(tmp_path, {"SensorClientId": "sensor-1"})

    result = runner.invoke(app, ["submit", str(path), "--evaluate-only"])

    assert result.exit_code == 0
    assert "No alert raised." in result.stdout
    assert stub.submitted[0][1] is True


def test_submit_batch(monkeypatch, runner: CliRunner, tmp_path) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)
    path = _write(tmp_path, [{"SensorClientId": "sensor-1"}, {"SensorClientId": "sensor-2"}])

    result = runner.invoke(app, ["submit", str(path)])

    assert result.exit_code == 0
    assert "Batch Result (2 readings)" in result.stdout
    assert "rule 1 drought" in result.stdout
    assert "FAILED MalformedReading" in result.stdout


def test_submit_rejects_non_json_file(monkeypatch, runner: CliRunner, tmp_path) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)
    path = tmp_path / "reading.json"
    path.write_text("not json")

    result = runner.invoke(app, ["submit", str(path)])

    assert result.exit_code != 0
    assert stub.submitted == []


def test_alerts_command(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["alerts", "--hours", "6", "--sensor", "sensor-1"])

    assert result.exit_code == 0
    assert "Alerts" in result.stdout
    assert "sensor=sensor-1 field=field-1" in result.stdout
    assert stub.alert_queries == [(6, "sensor-1")]


def test_alerts_command_with_no_alerts(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    stub.alerts_payload = []
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["alerts"])

    assert result.exit_code == 0
    assert "No alerts recorded." in result.stdout
    assert stub.alert_queries == [(24, None)]


def test_load_payload_rejects_scalars(tmp_path) -> None:
    path = _write(tmp_path, 42)

    with pytest.raises(typer.BadParameter):
        ApiClient.load_payload(path)


def test_load_config_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://alerts.internal:8000/")
    monkeypatch.setenv("CLI_TIMEOUT", "-3")
    monkeypatch.setenv("CLI_ALERT_HOURS", "72")

    config = load_config()

    assert config.base_url == "http://alerts.internal:8000"
    assert config.timeout == 30.0
    assert config.alert_hours == 72
    assert load_config(timeout=5.0).timeout == 5.0
