# tests/test_exporters.py
from __future__ import annotations

from datetime import datetime, timezone
from xml.etree import ElementTree as ET

import pytest
from mywellness_convert.exporters import (
    DEFAULT_NOTES,
    TCD_NS,
    TPX_NS,
    ExportContext,
    pick_tcx_sport,
    prorate,
    resolve_start,
    synthetic_offsets,
    workout_to_tcx,
)
from mywellness_convert.models import SeriesPoint, Workout, WorkoutExportOpts
from mywellness_convert.options import resolve_export_opts

FIXED = datetime(2024, 1, 1, tzinfo=timezone.utc)
NS = {"t": TCD_NS, "x": TPX_NS}


# -------- helpers --------
def _clock() -> datetime:
    return FIXED


def _workout(**kwargs) -> Workout:
    kwargs.setdefault("activity_name", "Indoor workout")
    w = Workout(uid="u", id="1", source="indoor", **kwargs)
    w.export_opts = resolve_export_opts(w)
    return w


def _all_on() -> WorkoutExportOpts:
    return WorkoutExportOpts(*([True] * 7))


def _parse(xml: str) -> ET.Element:
    return ET.fromstring(xml.encode("utf-8"))


def _trackpoints(root: ET.Element) -> list[ET.Element]:
    return root.findall(".//t:Trackpoint", NS)


def _text(node: ET.Element, path: str) -> str | None:
    found = node.find(path, NS)
    return found.text if found is not None else None


# -------- helpers under test --------
@pytest.mark.parametrize(
    ("total", "expected"),
    [
        (0, [0, 0]),
        (3, [0, 3]),
        (5, [0, 5]),
        (23, [0, 5, 10, 15, 20]),
        (25, [0, 5, 10, 15, 20, 25]),
    ],
)
def test_synthetic_offsets(total, expected):
    assert synthetic_offsets(total) == expected


def test_prorate():
    assert prorate(None, 5, 10) is None
    assert prorate(1000, 5, 0) == 0.0
    assert prorate(1000, 25, 100) == 250.0


def test_resolve_start_fallbacks():
    w = _workout(started_at_iso="2024-03-01T08:00:00Z")
    assert resolve_start(w, _clock) == datetime(2024, 3, 1, 8, tzinfo=timezone.utc)

    w = _workout(raw={"performedDate": "2024-03-02T09:00:00Z"})
    assert resolve_start(w, _clock) == datetime(2024, 3, 2, 9, tzinfo=timezone.utc)

    w = _workout(started_at_iso="garbage", raw={"on": "also garbage"})
    assert resolve_start(w, _clock) == FIXED


def test_default_cadence_from_move():
    w = _workout(duration_sec=600, metrics={"Move": 300, "Duration": 600})
    ctx = ExportContext.build(w, _all_on())
    assert ctx.default_cadence == 30
    assert ExportContext.build(w, WorkoutExportOpts()).default_cadence is None


@pytest.mark.parametrize(
    ("name", "sport"),
    [("Treadmill run", "Running"), ("Cycle", "Biking"), ("Bike", "Biking"), ("Climb", "Other"), ("", "Other")],
)
def test_pick_tcx_sport(name, sport):
    assert pick_tcx_sport(name) == sport


# -------- synthetic TCX --------
def test_synthetic_tcx_prorates_distance():
    w = _workout(duration_sec=100, distance_m=1000, calories=50, metrics={"AvgHr": 130, "Duration": 100})
    root = _parse(workout_to_tcx(w, clock=_clock))

    tps = _trackpoints(root)
    assert len(tps) == 21
    assert _text(tps[5], "t:Time") == "2024-01-01T00:00:25.000Z"
    assert _text(tps[5], "t:DistanceMeters") == "250.0"
    assert _text(tps[-1], "t:DistanceMeters") == "1000.0"
    assert {_text(tp, "t:HeartRateBpm/t:Value") for tp in tps} == {"130"}

    lap = root.find(".//t:Lap", NS)
    assert lap.get("StartTime") == "2024-01-01T00:00:00.000Z"
    assert _text(lap, "t:TotalTimeSeconds") == "100"
    assert _text(lap, "t:DistanceMeters") == "1000.0"
    assert _text(lap, "t:Calories") == "50"
    assert _text(root, ".//t:Activity/t:Notes") == DEFAULT_NOTES


def test_synthetic_tcx_zero_duration_has_two_points():
    w = _workout(distance_m=100)
    tps = _trackpoints(_parse(workout_to_tcx(w, clock=_clock)))
    assert len(tps) == 2
    assert [_text(tp, "t:Time") for tp in tps] == ["2024-01-01T00:00:00.000Z"] * 2
    assert [_text(tp, "t:DistanceMeters") for tp in tps] == ["0.0", "0.0"]


def test_synthetic_tcx_23_seconds():
    w = _workout(duration_sec=23)
    assert len(_trackpoints(_parse(workout_to_tcx(w, clock=_clock)))) == 5


def test_synthetic_tcx_altitude_and_power():
    w = _workout(duration_sec=10, vertical_m=20, metrics={"AvgPower": 149.5})
    root = _parse(workout_to_tcx(w, _all_on(), clock=_clock))
    tps = _trackpoints(root)
    assert [_text(tp, "t:AltitudeMeters") for tp in tps] == ["0.0", "10.0", "20.0"]
    assert {_text(tp, "t:Extensions/x:TPX/x:Watts") for tp in tps} == {"150"}


# -------- series TCX --------
def test_series_tcx_sorted_and_channels():
    series = [
        SeriesPoint(t_sec=10, hr=140, watts=200, cadence=60),
        SeriesPoint(t_sec=0, hr=100, watts=100, cadence=50),
        SeriesPoint(t_sec=5, hr=120, cadence=55),
    ]
    w = _workout(
        duration_sec=10,
        distance_m=500,
        series=series,
        metrics={"AvgHr": 120, "AvgPower": 150, "AvgSpm": 55},
    )
    root = _parse(workout_to_tcx(w, clock=_clock))
    tps = _trackpoints(root)

    assert [_text(tp, "t:Time") for tp in tps] == [
        "2024-01-01T00:00:00.000Z",
        "2024-01-01T00:00:05.000Z",
        "2024-01-01T00:00:10.000Z",
    ]
    assert [_text(tp, "t:HeartRateBpm/t:Value") for tp in tps] == ["100", "120", "140"]
    assert [_text(tp, "t:Cadence") for tp in tps] == ["50", "55", "60"]
    # missing per-point power falls back to the workout average
    assert [_text(tp, "t:Extensions/x:TPX/x:Watts") for tp in tps] == ["100", "150", "200"]
    assert [_text(tp, "t:DistanceMeters") for tp in tps] == ["0.0", "250.0", "500.0"]


def test_tcx_omits_disabled_elements():
    w = _workout(
        duration_sec=10,
        distance_m=500,
        calories=10,
        vertical_m=5,
        series=[SeriesPoint(t_sec=0, hr=100, watts=1, cadence=2, vertical_m=1)],
        metrics={"AvgHr": 100},
    )
    root = _parse(workout_to_tcx(w, WorkoutExportOpts(), clock=_clock))
    (tp,) = _trackpoints(root)

    for path in ("t:HeartRateBpm", "t:Cadence", "t:Extensions", "t:AltitudeMeters"):
        assert tp.find(path, NS) is None
    assert _text(tp, "t:DistanceMeters") == "0.0"

    lap = root.find(".//t:Lap", NS)
    assert _text(lap, "t:DistanceMeters") == "0"
    assert lap.find("t:Calories", NS) is None


def test_tcx_metrics_notes():
    w = _workout(duration_sec=60, metrics={"AvgHr": 130, "Move": 12.5})
    w.export_opts.include_metrics_in_notes = True
    notes = _text(_parse(workout_to_tcx(w, clock=_clock)), ".//t:Notes")
    assert notes == "Mywellness metrics: AvgHr=130, Move=12.5"


def test_tcx_is_deterministic_with_fixed_clock():
    w = _workout(duration_sec=30, metrics={"AvgHr": 120})
    first = workout_to_tcx(w, clock=_clock)
    assert first == workout_to_tcx(w, clock=_clock)
    assert first.startswith("<?xml")
    assert _text(_parse(first), ".//t:Id") == "2024-01-01T00:00:00.000Z"


def test_tcx_sport_attribute():
    w = _workout(activity_name="Outdoor run")
    act = _parse(workout_to_tcx(w, clock=_clock)).find(".//t:Activity", NS)
    assert act.get("Sport") == "Running"
