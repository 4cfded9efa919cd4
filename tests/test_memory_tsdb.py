"""Unit tests for the in-memory time-series store."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from datastore.errors import WriteRejected
from datastore.memory_tsdb import InMemoryTimeSeriesStore
from datastore.query import Aggregation, Comparison, Operator, TimeWindow
from models.timestamps import datetime_to_ns

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _ago(**delta) -> int:
    return datetime_to_ns(NOW - timedelta(**delta))


def _store(**kwargs) -> InMemoryTimeSeriesStore:
    return InMemoryTimeSeriesStore(name="main-bucket", clock=lambda: NOW, **kwargs)


def _write(store, fields, timestamp_ns, sensor="s-1", field_id="f-1", measurement="agro_sensors"):
    asyncio.run(
        store.write_point(
            measurement,
            {"sensor_client_id": sensor, "field_id": field_id},
            fields,
            timestamp_ns,
        )
    )


def _window(fields, **options) -> TimeWindow:
    return TimeWindow.last(
        options.pop("duration", timedelta(hours=24)),
        bucket="main-bucket",
        measurement=options.pop("measurement", "agro_sensors"),
        fields=fields,
        tags=options.pop("tags", {"sensor_client_id": "s-1"}),
        **options,
    )


def test_aggregations_reduce_each_field_inside_range() -> None:
    store = _store()
    _write(store, {"soil_moisture_percent": 40.0}, _ago(hours=1))
    _write(store, {"soil_moisture_percent": 20.0}, _ago(hours=2))
    _write(store, {"soil_moisture_percent": 60.0}, _ago(hours=3))
    _write(store, {"soil_moisture_percent": 1.0}, _ago(hours=25))

    minimum = asyncio.run(store.query(_window(("soil_moisture_percent",), aggregation=Aggregation.min)))
    maximum = asyncio.run(store.query(_window(("soil_moisture_percent",), aggregation=Aggregation.max)))
    mean = asyncio.run(store.query(_window(("soil_moisture_percent",), aggregation=Aggregation.mean)))

    assert [row.values for row in minimum] == [{"_field": "soil_moisture_percent", "_value": 20.0}]
    assert minimum[0].time == NOW - timedelta(hours=2)
    assert maximum[0].get("_value") == 60.0
    assert mean[0].get("_value") == pytest.approx(40.0)
    assert mean[0].time is None


def test_range_stop_is_exclusive_and_future_points_need_forward_window() -> None:
    store = _store()
    _write(store, {"rain_probability": 55.0}, datetime_to_ns(NOW + timedelta(days=1)), measurement="weather_forecast")
    _write(store, {"rain_probability": 90.0}, datetime_to_ns(NOW + timedelta(days=3)), measurement="weather_forecast")

    forward = TimeWindow(
        bucket="main-bucket",
        measurement="weather_forecast",
        start=timedelta(0),
        stop=timedelta(days=3),
        fields=("rain_probability",),
        aggregation=Aggregation.max,
    )
    past = _window(
        ("rain_probability",), tags={}, measurement="weather_forecast", aggregation=Aggregation.max
    )

    assert [row.get("_value") for row in asyncio.run(store.query(forward))] == [55.0]
    assert asyncio.run(store.query(past)) == []


def test_tag_filters_select_one_series() -> None:
    store = _store()
    _write(store, {"data_quality_score": 10.0}, _ago(hours=1), sensor="s-2")
    _write(store, {"data_quality_score": 90.0}, _ago(hours=1), sensor="s-1")

    rows = asyncio.run(store.query(_window(("data_quality_score",), aggregation=Aggregation.min)))

    assert rows[0].get("_value") == 90.0


def test_non_numeric_values_are_skipped_by_aggregates() -> None:
    store = _store()
    _write(store, {"data_quality_score": "n/a"}, _ago(hours=1))

    rows = asyncio.run(store.query(_window(("data_quality_score",), aggregation=Aggregation.min)))

    assert rows == []


def test_pivot_joins_fields_per_instant_and_applies_predicates() -> None:
    store = _store()
    same_instant = _ago(hours=1)
    _write(store, {"soil_ph": 8.5}, same_instant)
    _write(store, {"air_temperature_c": 41.0}, same_instant)
    _write(store, {"soil_ph": 8.5}, _ago(hours=2))
    _write(store, {"air_temperature_c": 41.0}, _ago(hours=3))

    window = _window(
        ("soil_ph", "air_temperature_c"),
        pivot=True,
        where=(
            Comparison("soil_ph", Operator.gt, 8),
            Comparison("air_temperature_c", Operator.ge, 40),
        ),
    )
    rows = asyncio.run(store.query(window))

    assert len(rows) == 1
    assert rows[0].values["soil_ph"] == 8.5
    assert rows[0].values["air_temperature_c"] == 41.0
    assert rows[0].values["sensor_client_id"] == "s-1"


def test_raw_rows_carry_tags() -> None:
    store = _store()
    _write(store, {"message": "dry"}, _ago(minutes=5), measurement="alerts")

    rows = asyncio.run(store.query(_window(("message",), tags={}, measurement="alerts")))

    assert rows[0].values == {
        "sensor_client_id": "s-1",
        "field_id": "f-1",
        "_field": "message",
        "_value": "dry",
    }


def test_write_point_rejects_empty_points() -> None:
    store = _store()

    with pytest.raises(WriteRejected):
        asyncio.run(store.write_point("agro_sensors", {}, {}, 0))
    with pytest.raises(WriteRejected):
        asyncio.run(store.write_point("", {}, {"x": 1.0}, 0))


def test_redelivered_point_is_stored_once_with_later_fields_winning() -> None:
    store = _store()
    at = _ago(hours=2)
    _write(store, {"air_temperature_c": 18.0, "air_humidity_percent": 90.0}, at)
    _write(store, {"air_temperature_c": 18.0, "air_humidity_percent": 90.0}, at)
    _write(store, {"air_temperature_c": 28.0, "air_humidity_percent": 90.0}, _ago(hours=1))

    rows = asyncio.run(
        store.query(_window(("air_temperature_c",), aggregation=Aggregation.mean))
    )

    assert len(store.scan("agro_sensors")) == 2
    assert rows[0].values["_value"] == pytest.approx(23.0)

    _write(store, {"air_temperature_c": 19.5, "soil_ph": 6.0}, at)

    [merged, _later] = store.scan("agro_sensors")
    assert merged.fields == {"air_temperature_c": 19.5, "air_humidity_percent": 90.0, "soil_ph": 6.0}


def test_same_instant_in_another_series_is_a_separate_point() -> None:
    store = _store()
    at = _ago(hours=1)
    _write(store, {"soil_ph": 6.5}, at, sensor="s-1")
    _write(store, {"soil_ph": 7.5}, at, sensor="s-2")
    _write(store, {"soil_ph": 7.5}, at, sensor="s-1", measurement="alerts")

    assert len(store.scan()) == 3


def test_points_persist_to_log_and_reload(tmp_path) -> None:
    path = tmp_path / "tsdb.jsonl"
    store = _store(persistence_path=path)
    _write(store, {"soil_ph": 6.5}, _ago(hours=1))
    _write(store, {"soil_ph": 6.7}, _ago(hours=1))

    lines = path.read_text().splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["measurement"] == "agro_sensors"
    assert first["tags"] == {"field_id": "f-1", "sensor_client_id": "s-1"}

    reloaded = _store(persistence_path=path)
    assert reloaded.scan("agro_sensors") == store.scan("agro_sensors")
    assert reloaded.scan("agro_sensors")[0].fields == {"soil_ph": 6.7}
    assert reloaded.scan("alerts") == []


def test_damaged_log_entries_are_skipped(tmp_path, caplog) -> None:
    path = tmp_path / "tsdb.jsonl"
    good = {
        "measurement": "agro_sensors",
        "tags": {"sensor_client_id": "s-1"},
        "fields": {"soil_ph": 6.5},
        "timestamp_ns": _ago(hours=1),
    }
    path.write_text(
        "\n".join(
            [
                "{not json",
                json.dumps({"measurement": "agro_sensors", "fields": {"soil_ph": 1.0}}),
                json.dumps({**good, "timestamp_ns": "yesterday"}),
                json.dumps([1, 2, 3]),
                json.dumps(good),
            ]
        )
        + "\n"
    )

    store = _store(persistence_path=path)

    [point] = store.scan()
    assert point.fields == {"soil_ph": 6.5}
    skipped = [r for r in caplog.records if r.getMessage() == "Skipping unreadable store log entry"]
    assert len(skipped) == 4
