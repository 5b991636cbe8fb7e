# tests/test_fit_export.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from mywellness_convert.fit_export import (
    MAX_SPEED_FACTOR,
    build_fit_messages,
    build_records,
    forward_fill_hr,
    pick_fit_sport,
    workout_to_fit,
)
from mywellness_convert.models import SeriesPoint, Workout, WorkoutExportOpts
from mywellness_convert.normalize import extract_single_detail
from mywellness_convert.options import resolve_export_opts
from mywellness_convert.validate import validate_fit

FIXED = datetime(2024, 1, 1, tzinfo=timezone.utc)
START = datetime(2024, 3, 1, 8, tzinfo=timezone.utc)


# -------- helpers --------
def _clock() -> datetime:
    return FIXED


def _workout(**kwargs) -> Workout:
    kwargs.setdefault("activity_name", "Indoor workout")
    kwargs.setdefault("started_at_iso", "2024-03-01T08:00:00Z")
    w = Workout(uid="u", id="1", source="indoor", **kwargs)
    w.export_opts = resolve_export_opts(w)
    return w


def _series_workout() -> Workout:
    return _workout(
        activity_name="Climb",
        duration_sec=10,
        distance_m=500,
        vertical_m=12,
        calories=20,
        series=[
            SeriesPoint(t_sec=0, hr=100, watts=100, cadence=50),
            SeriesPoint(t_sec=5, hr=120, cadence=55),
            SeriesPoint(t_sec=10, hr=140, watts=200, cadence=60),
        ],
        metrics={"AvgHr": 120, "MaxHr": 140, "AvgPower": 150, "AvgSpm": 55},
    )


def _by_name(messages, name):
    return [m for m in messages if m.name == name]


# -------- forward fill --------
@pytest.mark.parametrize(
    ("hrs", "fallback", "expected"),
    [
        ([None, None, 150, None], 130, [130, 130, 150, 150]),
        ([None, 140, None], None, [140, 140, 140]),
        ([100, None, 120], 90, [100, 100, 120]),
        ([None, None], None, [None, None]),
        ([], 130, []),
    ],
)
def test_forward_fill_hr(hrs, fallback, expected):
    assert forward_fill_hr(hrs, fallback) == expected


# -------- sport --------
@pytest.mark.parametrize(
    ("name", "source", "expected"),
    [
        ("Treadmill Run", "indoor", ("running", None)),
        ("Bike ride", "outdoor", ("cycling", None)),
        ("Stair climber", "indoor", ("fitness_equipment", "stair_climbing")),
        ("Floors", "outdoor", ("fitness_equipment", "stair_climbing")),
        ("Indoor workout", "indoor", ("fitness_equipment", None)),
        ("Outdoor workout", "outdoor", ("generic", None)),
    ],
)
def test_pick_fit_sport(name, source, expected):
    w = Workout(uid="u", id="1", source=source, activity_name=name)
    assert pick_fit_sport(w) == expected


# -------- records --------
def test_series_records_interpolate_missing_hr():
    w = _workout(
        duration_sec=10,
        series=[SeriesPoint(t_sec=10, hr=140), SeriesPoint(t_sec=5), SeriesPoint(t_sec=0, hr=100)],
        metrics={"AvgHr": 120},
    )
    assert [r.hr for r in build_records(w, w.export_opts)] == [100, 120, 140]


def test_series_records_without_hr_use_average():
    w = _workout(
        duration_sec=10,
        series=[SeriesPoint(t_sec=0), SeriesPoint(t_sec=10)],
        metrics={"AvgHr": 131.4},
    )
    assert [r.hr for r in build_records(w, w.export_opts)] == [131, 131]


def test_synthetic_records():
    w = _workout(duration_sec=23, distance_m=230, metrics={"MaxHr": 150})
    records = build_records(w, w.export_opts)
    assert [r.t_sec for r in records] == [0, 5, 10, 15, 20]
    assert {r.hr for r in records} == {150}
    assert records[2].distance_m == pytest.approx(100)


# -------- messages --------
def test_message_order_plain():
    names = [m.name for m in build_fit_messages(_series_workout(), clock=_clock)]
    assert names == ["file_id", "record", "record", "record", "lap", "session", "activity"]


def test_message_order_enhanced():
    names = [m.name for m in build_fit_messages(_series_workout(), enhanced_compatibility=True, clock=_clock)]
    assert names == [
        "file_id",
        "file_creator",
        "device_info",
        "event",
        "record",
        "record",
        "record",
        "lap",
        "session",
        "activity",
        "event",
        "device_info",
    ]


def test_enhanced_timer_events():
    msgs = build_fit_messages(_series_workout(), enhanced_compatibility=True, clock=_clock)
    start, stop = _by_name(msgs, "event")
    assert (start.fields["event"], start.fields["event_type"]) == ("timer", "start")
    assert (stop.fields["event"], stop.fields["event_type"]) == ("timer", "stop_all")
    assert start.fields["timestamp"] == START
    assert stop.fields["timestamp"] == START + timedelta(seconds=10)


def test_records_fields():
    msgs = build_fit_messages(_series_workout(), clock=_clock)
    records = _by_name(msgs, "record")

    assert [r.fields["timestamp"] for r in records] == [START + timedelta(seconds=s) for s in (0, 5, 10)]
    assert [r.fields["heart_rate"] for r in records] == [100, 120, 140]
    assert [r.fields["power"] for r in records] == [100, 150, 200]
    assert [r.fields["distance"] for r in records] == [0.0, 250.0, 500.0]
    assert [r.fields["altitude"] for r in records] == [0.0, 6.0, 12.0]


def test_records_drop_absent_fields():
    w = _series_workout()
    msgs = build_fit_messages(w, WorkoutExportOpts(), clock=_clock)
    for r in _by_name(msgs, "record"):
        assert set(r.fields) == {"timestamp", "distance"}


def test_lap_and_session_aggregates():
    msgs = build_fit_messages(_series_workout(), clock=_clock)
    (lap,) = _by_name(msgs, "lap")
    (session,) = _by_name(msgs, "session")
    (activity,) = _by_name(msgs, "activity")

    f = lap.fields
    assert f["start_time"] == START
    assert f["timestamp"] == START + timedelta(seconds=10)
    assert f["total_elapsed_time"] == 10
    assert f["total_timer_time"] == 10
    assert f["total_distance"] == 500
    assert f["avg_speed"] == 50
    assert f["max_speed"] == pytest.approx(50 * MAX_SPEED_FACTOR)
    assert f["total_ascent"] == 12
    assert f["total_descent"] == 0
    assert f["total_work"] == 1500
    assert f["total_calories"] == 20
    assert f["avg_heart_rate"] == 120
    assert f["max_heart_rate"] == 140
    assert f["avg_power"] == 150
    assert f["avg_cadence"] == 55

    assert session.fields["sport"] == "fitness_equipment"
    assert session.fields["sub_sport"] == "stair_climbing"
    assert session.fields["num_laps"] == 1
    assert session.fields["avg_heart_rate"] == 120

    assert activity.fields["num_sessions"] == 1
    assert activity.fields["total_timer_time"] == 10


def test_zero_duration_workout_still_has_a_second():
    w = _workout()
    msgs = build_fit_messages(w, clock=_clock)
    (lap,) = _by_name(msgs, "lap")
    assert lap.fields["total_elapsed_time"] == 1
    assert lap.fields["total_distance"] == 0
    assert len(_by_name(msgs, "record")) == 2


def test_missing_start_uses_clock():
    w = _workout(started_at_iso=None)
    (file_id,) = _by_name(build_fit_messages(w, clock=_clock), "file_id")
    assert file_id.fields["time_created"] == FIXED


def test_detail_payload_to_messages():
    payload = {
        "data": {
            "cardioLogId": "abc",
            "date": "2024-03-01",
            "analitics": {
                "descriptor": [{"i": 0, "pr": {"name": "Power"}}],
                "samples": [{"t": 0, "vs": [90]}, {"t": 5, "vs": [110]}, {"t": 10, "vs": [130]}],
                "hr": [{"t": 0, "hr": 100}, {"t": 10, "hr": 140}],
            },
        }
    }
    w = extract_single_detail(payload, "07:30", clock=_clock)
    msgs = build_fit_messages(w, clock=_clock)

    records = _by_name(msgs, "record")
    assert len(records) == 3
    assert records[0].fields["timestamp"] == datetime(2024, 3, 1, 7, 30, tzinfo=timezone.utc)
    assert [r.fields["heart_rate"] for r in records] == [100, 120, 140]
    assert _by_name(msgs, "lap")[0].fields["avg_heart_rate"] == 120


# -------- binary round trip --------
@pytest.mark.parametrize("enhanced", [False, True])
def test_written_fit_validates(enhanced):
    data = workout_to_fit(_series_workout(), enhanced_compatibility=enhanced, clock=_clock)
    assert isinstance(data, bytes)

    summary = validate_fit(data)
    assert summary.activities == 1
    assert summary.sessions == 1
    assert summary.laps == 1
    assert summary.records == 3
    assert summary.records_with_hr == 3


def test_synthetic_fit_validates():
    w = _workout(duration_sec=600, distance_m=1000, metrics={"AvgHr": 130})
    summary = validate_fit(workout_to_fit(w, clock=_clock))
    assert summary.records == 121


def test_fit_bytes_are_repeatable_with_fixed_clock():
    w = _series_workout()
    assert workout_to_fit(w, clock=_clock) == workout_to_fit(w, clock=_clock)
    assert workout_to_fit(w, enhanced_compatibility=True, clock=_clock) == workout_to_fit(
        w, enhanced_compatibility=True, clock=_clock
    )

    synthetic = _workout(started_at_iso=None, duration_sec=60, metrics={"AvgHr": 120})
    assert workout_to_fit(synthetic, clock=_clock) == workout_to_fit(synthetic, clock=_clock)


def test_spm_detail_payload_end_to_end():
    payload = {
        "data": {
            "date": "2024-03-01T08:00:00Z",
            "analitics": {
                "descriptor": [{"i": 0, "pr": {"name": "Spm"}}],
                "samples": [{"t": 0, "vs": [50]}, {"t": 5, "vs": [55]}, {"t": 10, "vs": [60]}],
                "hr": [{"t": 0, "hr": 100}, {"t": 10, "hr": 140}],
            },
        }
    }
    w = extract_single_detail(payload, clock=_clock)
    assert w.series[1].t_sec == 5
    assert w.series[1].hr == 120

    msgs = build_fit_messages(w, clock=_clock)
    records = _by_name(msgs, "record")
    assert len(records) == 3
    assert [r.fields["cadence"] for r in records] == [50, 55, 60]
    assert _by_name(msgs, "lap")[0].fields["avg_heart_rate"] == 120
