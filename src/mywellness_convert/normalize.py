from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from mywellness_convert.errors import UnsupportedShapeError
from mywellness_convert.models import (
    AVG_SPM,
    CALORIES,
    DURATION,
    FLOORS,
    H_DISTANCE,
    MOVE,
    Clock,
    Metrics,
    SourceShape,
    Workout,
    utc_now,
)
from mywellness_convert.options import resolve_export_opts
from mywellness_convert.series import reconstruct_series, summarize_series
from mywellness_convert.utils import (
    as_list,
    as_record,
    coerce_float,
    parse_duration_string,
    parse_iso,
    round_half_up,
    text_id,
    to_iso_z,
    to_meters,
)

logger = logging.getLogger(__name__)

_START_OVERRIDE_RE = re.compile(r"^(?P<h>\d{1,2}):(?P<m>\d{2})(?::(?P<s>\d{2}))?$")


# -----------------------
# Metric helpers
# -----------------------


def pr_to_metrics(raw: Any) -> Metrics:
    """
    Fold the `pr` array ([{"n": "AvgHr", "v": 131}, ...]) into a metrics map.
    Looked up under performedData / physicalActivityData, lower- then upper-case key.
    Unknown names pass through verbatim; entries with no numeric value are dropped.
    """
    rec = as_record(raw) or {}
    performed = as_record(rec.get("performedData")) or {}
    physical = as_record(rec.get("physicalActivityData")) or {}

    pr = None
    for parent, key in ((performed, "pr"), (physical, "pr"), (performed, "PR"), (physical, "PR")):
        if parent.get(key) is not None:
            pr = parent[key]
            break

    out: Metrics = {}
    for item in as_list(pr):
        item_rec = as_record(item) or {}
        name = item_rec.get("n")
        val = coerce_float(item_rec.get("v"))
        if isinstance(name, str) and val is not None:
            out[name] = val
    return out


def pick_distance_m(m: Metrics) -> float | None:
    for key in (H_DISTANCE, "Distance", "DistanceMeters"):
        if m.get(key) is not None:
            return m[key]
    if m.get("Km") is not None:
        return m["Km"] * 1000
    return None


def pick_vertical_m(m: Metrics) -> float | None:
    for key in ("Elevation", FLOORS):
        if m.get(key) is not None:
            return m[key]
    return None


def pick_cadence_spm(m: Metrics) -> float | None:
    for key in (AVG_SPM, "Cadence"):
        if m.get(key) is not None:
            return m[key]
    return None


def _fallback_id(started_at: Any, default: str, idx: int) -> str:
    # an empty-string timestamp still counts as present
    return f"{started_at if started_at is not None else default}-{idx}"


def _first_number(*values: Any) -> float | None:
    for v in values:
        x = coerce_float(v)
        if x is not None:
            return x
    return None


# -----------------------
# Batch shapes
# -----------------------


def extract_indoor(obj: Any) -> list[Workout]:
    """Indoor machine export: a JSON array of records with `pr` metrics and an `on` timestamp."""
    out: list[Workout] = []
    for idx, raw in enumerate(as_list(obj)):
        rec = as_record(raw) or {}
        metrics = pr_to_metrics(raw)
        started_at = rec.get("on")
        vertical_m = pick_vertical_m(metrics)

        # Best effort naming; the export carries no equipment type
        name = rec.get("activityName") or (
            "Stair climber" if vertical_m is not None else "Indoor workout"
        )
        wid_raw = rec.get("id")
        wid = text_id(wid_raw) if wid_raw is not None else _fallback_id(started_at, "ind", idx)

        w = Workout(
            uid=f"indoor-{started_at if started_at is not None else 'unknown'}-{wid}-{idx}",
            id=wid,
            source="indoor",
            activity_name=str(name),
            started_at_iso=started_at if isinstance(started_at, str) else None,
            duration_sec=metrics.get(DURATION),
            calories=metrics.get(CALORIES),
            distance_m=pick_distance_m(metrics),
            vertical_m=vertical_m,
            cadence_spm=pick_cadence_spm(metrics),
            metrics=metrics,
            raw=raw,
        )
        w.export_opts = resolve_export_opts(w)
        out.append(w)
    return out


def extract_outdoor(obj: Any) -> list[Workout]:
    """
    Outdoor activity export: an array, or an object wrapping it in
    `items` / `activities` / `data`. Loose top-level duration/calories
    fields back up the `pr` metrics.
    """
    items: Any = obj
    if isinstance(obj, dict):
        items = next(
            (obj[k] for k in ("items", "activities", "data") if obj.get(k) is not None),
            [],
        )
    if not isinstance(items, list):
        return []

    out: list[Workout] = []
    for idx, raw in enumerate(items):
        rec = as_record(raw) or {}
        metrics = pr_to_metrics(raw)
        started_at = rec.get("performedDate")
        if started_at is None:
            started_at = rec.get("on")

        wid_raw = rec.get("id") if rec.get("id") is not None else rec.get("uuid")
        wid = text_id(wid_raw) if wid_raw is not None else _fallback_id(started_at, "out", idx)
        name = rec.get("activityName")

        w = Workout(
            uid=f"outdoor-{started_at if started_at is not None else 'unknown'}-{wid}-{idx}",
            id=wid,
            source="outdoor",
            activity_name=str(name) if name is not None else "Outdoor workout",
            started_at_iso=started_at if isinstance(started_at, str) else None,
            duration_sec=_first_number(metrics.get(DURATION), rec.get("duration"), rec.get("Duration")),
            calories=_first_number(metrics.get(CALORIES), rec.get("calories"), rec.get("Calories")),
            distance_m=pick_distance_m(metrics),
            vertical_m=pick_vertical_m(metrics),
            cadence_spm=pick_cadence_spm(metrics),
            metrics=metrics,
            raw=raw,
        )
        w.export_opts = resolve_export_opts(w)
        out.append(w)
    return out


# -----------------------
# Single-workout detail page
# -----------------------


@dataclass
class SummaryTable:
    duration_sec: float | None = None
    move: float | None = None
    distance_m: float | None = None
    vertical_m: float | None = None
    calories: float | None = None


def read_summary_table(items: Any) -> SummaryTable:
    """
    The detail page's parallel `data` array of display properties, e.g.
    {"property": "duration", "name": "Duration", "value": "12:30", "rawValue": 12.5, "uM": "min"}.
    Properties are matched by substring on the lower-cased property or name.
    """
    out = SummaryTable()
    for item in as_list(items):
        rec = as_record(item) or {}
        prop = rec["property"].lower() if isinstance(rec.get("property"), str) else ""
        name = rec["name"].lower() if isinstance(rec.get("name"), str) else ""
        unit = rec.get("uM")
        raw_value = coerce_float(rec.get("rawValue"))

        if "duration" in prop or "duration" in name:
            from_text = (
                parse_duration_string(rec["value"]) if isinstance(rec.get("value"), str) else None
            )
            if from_text is not None:
                out.duration_sec = from_text
            elif raw_value is not None:
                # rawValue is minutes
                out.duration_sec = round_half_up(raw_value * 60)
        if "move" in prop or "move" in name:
            out.move = raw_value
        if ("distance" in prop or "distance" in name) and raw_value is not None:
            out.distance_m = to_meters(raw_value, unit)
        if (
            "elevation" in prop or "floors" in prop or "elevation" in name
        ) and raw_value is not None:
            out.vertical_m = to_meters(raw_value, unit)
        if "calories" in prop or "calories" in name:
            out.calories = raw_value
    return out


def _parse_time_of_day(hhmmss: str | None) -> tuple[int, int, int] | None:
    """'HH:MM' or 'HH:MM:SS' -> (h, m, s); None when malformed or out of range."""
    if not hhmmss:
        return None
    match = _START_OVERRIDE_RE.match(hhmmss.strip())
    if not match:
        return None
    hh, mm, ss = int(match["h"]), int(match["m"]), int(match["s"] or 0)
    if not (0 <= hh < 24 and 0 <= mm < 60 and 0 <= ss < 60):
        return None
    return hh, mm, ss


def override_time_of_day(dt: datetime, hhmmss: str | None) -> datetime:
    """
    Replace the time of day of `dt` with a user-supplied HH:MM[:SS]. The change
    happens in dt's own UTC offset, so the calendar date never shifts.
    Invalid overrides are ignored.
    """
    tod = _parse_time_of_day(hhmmss)
    if tod is None:
        return dt
    hh, mm, ss = tod
    return dt.replace(hour=hh, minute=mm, second=ss, microsecond=0)


def extract_single_detail(
    obj: Any,
    preferred_start_time: str | None = None,
    *,
    clock: Clock = utc_now,
) -> Workout | None:
    """
    A single workout page payload: `data` (or the root) holds identity fields,
    an `analitics` block with descriptor/samples/hr arrays, and a `data`
    summary-property array. Returns None when there is no object to read.
    """
    root = as_record(obj)
    if root is None:
        return None
    core = as_record(root.get("data")) or root

    reconstructed = reconstruct_series(core.get("analitics"))
    series = reconstructed.points
    summary = read_summary_table(core.get("data"))

    duration_sec: float | None = series[-1].t_sec if series else None
    if summary.duration_sec is not None:
        duration_sec = summary.duration_sec

    metrics: Metrics = {}
    if duration_sec is not None:
        metrics[DURATION] = duration_sec
    if summary.move is not None:
        metrics[MOVE] = summary.move
    metrics.update(summarize_series(series))

    distance_m = (
        reconstructed.max_distance_m
        if reconstructed.max_distance_m is not None
        else summary.distance_m
    )
    if distance_m is not None:
        metrics[H_DISTANCE] = distance_m
    if summary.vertical_m is not None and FLOORS not in metrics:
        metrics[FLOORS] = summary.vertical_m

    parsed = parse_iso(core.get("date"))
    started_at_iso = (
        to_iso_z(override_time_of_day(parsed, preferred_start_time)) if parsed else None
    )

    name = next(
        (core[k] for k in ("physicalActivityName", "name", "equipmentType") if isinstance(core.get(k), str)),
        "MyWellness workout",
    )
    wid = next(
        (core[k] for k in ("cardioLogId", "physicalActivityId") if isinstance(core.get(k), str)),
        None,
    )
    if wid is None:
        wid = f"json-{int(clock().timestamp() * 1000)}"

    verticals = [p.vertical_m for p in series if p.vertical_m is not None]
    cadences = [p.cadence for p in series if p.cadence is not None]

    w = Workout(
        uid=f"json-{wid}",
        id=wid,
        source="indoor",
        activity_name=name,
        started_at_iso=started_at_iso,
        duration_sec=duration_sec,
        calories=summary.calories,
        distance_m=pick_distance_m(metrics),
        vertical_m=max(verticals) if verticals else summary.vertical_m,
        cadence_spm=sum(cadences) / len(cadences) if cadences else None,
        metrics=metrics,
        series=series,
        raw=core,
    )
    w.export_opts = resolve_export_opts(w)
    logger.debug(
        "Detail workout %s: %d samples, %d metrics", w.id, len(series), len(metrics)
    )
    return w


def normalize(
    obj: Any,
    shape: SourceShape,
    *,
    preferred_start_time: str | None = None,
    clock: Clock = utc_now,
) -> list[Workout]:
    """Dispatch one parsed JSON value over the closed set of source shapes."""
    if shape == "indoor":
        return extract_indoor(obj)
    if shape == "outdoor":
        return extract_outdoor(obj)
    if shape == "single-detail":
        w = extract_single_detail(obj, preferred_start_time, clock=clock)
        return [w] if w is not None else []
    msg = f"Unsupported source shape: {shape!r}"
    raise UnsupportedShapeError(msg)
