from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from mywellness_convert.exporters import (
    ExportContext,
    prorate,
    resolve_start,
    series_altitude,
    synthetic_offsets,
)
from mywellness_convert.models import Clock, Workout, WorkoutExportOpts, utc_now
from mywellness_convert.series import HrAnchor, HrInterpolator
from mywellness_convert.utils import round_half_up

PRODUCT_NAME = "mywellness-convert"
# max_speed is not measured; it is estimated from avg_speed
MAX_SPEED_FACTOR = 1.08


@dataclass
class FitMessage:
    name: str
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass
class RecordSample:
    t_sec: int
    distance_m: float
    hr: int | None = None
    cadence: int | None = None
    watts: int | None = None
    altitude_m: float | None = None


def _compact(d: dict[str, Any]) -> dict[str, Any]:
    # absent values are left to the writer's defaults
    return {k: v for k, v in d.items() if v is not None}


def pick_fit_sport(w: Workout) -> tuple[str, str | None]:
    """(sport, sub_sport) from the activity name; stairs get their own sub-sport."""
    a = (w.activity_name or "").lower()
    if "run" in a:
        return "running", None
    if "cycle" in a or "bike" in a or "ride" in a:
        return "cycling", None
    if "stair" in a or "climb" in a or "floor" in a:
        return "fitness_equipment", "stair_climbing"
    if w.source == "indoor":
        return "fitness_equipment", None
    return "generic", None


def forward_fill_hr(hrs: list[int | None], fallback: int | None) -> list[int | None]:
    """
    Fill HR gaps with the most recent known value.

    The seed for leading gaps is `fallback` (average, else max HR) when there is
    one, else the first known value. With nothing to seed from, the input is
    returned unchanged.
    """
    seed = fallback
    if seed is None:
        seed = next((h for h in hrs if h is not None), None)
    if seed is None:
        return list(hrs)

    out: list[int | None] = []
    prev = seed
    for h in hrs:
        if h is None:
            out.append(prev)
        else:
            prev = h
            out.append(h)
    return out


def _series_records(w: Workout, opts: WorkoutExportOpts, ctx: ExportContext) -> list[RecordSample]:
    points = w.sorted_series()
    span = max(ctx.total_seconds, points[-1].t_sec)
    hr_at = HrInterpolator([HrAnchor(p.t_sec, p.hr) for p in points if p.hr is not None])
    cadence = round_half_up(ctx.default_cadence) if ctx.default_cadence is not None else None

    records: list[RecordSample] = []
    for p in points:
        t = max(0, round_half_up(p.t_sec))
        rec = RecordSample(t_sec=t, distance_m=prorate(ctx.total_distance_m, t, span) or 0.0)
        if opts.include_hr_series:
            hr = hr_at(t)
            rec.hr = round_half_up(hr) if hr is not None else None
        if opts.include_cadence_series:
            rec.cadence = round_half_up(p.cadence) if p.cadence is not None else cadence
        if opts.include_power_series:
            rec.watts = round_half_up(p.watts) if p.watts is not None else ctx.default_watts
        if opts.include_vertical_as_altitude:
            rec.altitude_m = series_altitude(p.vertical_m, ctx.total_vertical_m, t, span)
        records.append(rec)

    # Second HR pass on top of the interpolation, kept independent of it
    if opts.include_hr_series and records:
        filled = forward_fill_hr([r.hr for r in records], ctx.constant_hr)
        for r, hr in zip(records, filled):
            r.hr = hr
    return records


def _synthetic_records(opts: WorkoutExportOpts, ctx: ExportContext) -> list[RecordSample]:
    hr = ctx.constant_hr if opts.include_hr_series else None
    cadence = round_half_up(ctx.default_cadence) if ctx.default_cadence is not None else None
    total = ctx.total_seconds
    return [
        RecordSample(
            t_sec=t,
            distance_m=prorate(ctx.total_distance_m, t, total) or 0.0,
            altitude_m=prorate(ctx.total_vertical_m, t, total) if total > 0 else None,
            hr=hr,
            cadence=cadence,
            watts=ctx.default_watts,
        )
        for t in synthetic_offsets(total)
    ]


def build_records(w: Workout, opts: WorkoutExportOpts) -> list[RecordSample]:
    ctx = ExportContext.build(w, opts)
    if w.has_series:
        return _series_records(w, opts, ctx)
    return _synthetic_records(opts, ctx)


def build_fit_messages(
    w: Workout,
    opts: WorkoutExportOpts | None = None,
    enhanced_compatibility: bool = False,
    *,
    clock: Clock = utc_now,
) -> list[FitMessage]:
    """
    Ordered FIT activity messages for one workout:

        file_id
        [file_creator, device_info, event(timer start)]      enhanced only
        record * N                                            ascending offsets
        lap, session, activity
        [event(timer stop_all), device_info]                  enhanced only

    Timestamps are timezone-aware datetimes; keys without a value are omitted.
    """
    opts = opts if opts is not None else w.export_opts
    ctx = ExportContext.build(w, opts)
    start = resolve_start(w, clock)
    records = build_records(w, opts)

    last_t = records[-1].t_sec if records else ctx.total_seconds
    total_time = max(1, last_t)
    end = start + timedelta(seconds=total_time)

    avg_speed = ctx.total_distance_m / total_time if ctx.total_distance_m is not None else None
    max_speed = avg_speed * MAX_SPEED_FACTOR if avg_speed is not None else None
    # vertical gain only; descent is never measured
    total_ascent = max(0, ctx.total_vertical_m) if ctx.total_vertical_m is not None else None
    total_descent = 0 if ctx.total_vertical_m is not None else None
    total_work = (
        max(0, round_half_up(ctx.avg_power * total_time)) if ctx.avg_power is not None else None
    )
    calories = max(0, round_half_up(ctx.calories)) if ctx.calories is not None else None
    avg_hr = round_half_up(ctx.avg_hr) if ctx.avg_hr is not None else None
    max_hr = round_half_up(ctx.max_hr) if ctx.max_hr is not None else None
    avg_power = round_half_up(ctx.avg_power) if ctx.avg_power is not None else None
    avg_cadence = round_half_up(ctx.default_cadence) if ctx.default_cadence is not None else None

    device_info = {
        "device_index": 0,
        "manufacturer": "garmin",
        "product": 0,
        "serial_number": 0,
        "software_version": 1.0,
    }

    messages = [
        FitMessage("file_id", {
            "type": "activity",
            "manufacturer": "garmin",
            "product": 0,
            "serial_number": 0,
            "time_created": start,
            "product_name": PRODUCT_NAME,
        }),
    ]
    if enhanced_compatibility:
        messages += [
            FitMessage("file_creator", {"software_version": 100, "hardware_version": 1}),
            FitMessage("device_info", {"timestamp": start, **device_info}),
            FitMessage("event", {
                "timestamp": start,
                "event": "timer",
                "event_type": "start",
                "event_group": 0,
            }),
        ]

    for r in records:
        messages.append(FitMessage("record", _compact({
            "timestamp": start + timedelta(seconds=r.t_sec),
            "distance": r.distance_m,
            "heart_rate": r.hr,
            "cadence": r.cadence,
            "power": r.watts,
            "altitude": r.altitude_m,
        })))

    summary = {
        "timestamp": end,
        "start_time": start,
        "total_elapsed_time": total_time,
        "total_timer_time": total_time,
        "total_distance": ctx.total_distance_m if ctx.total_distance_m is not None else 0,
        "total_calories": calories,
        "total_ascent": total_ascent,
        "total_descent": total_descent,
        "avg_speed": avg_speed,
        "max_speed": max_speed,
        "avg_heart_rate": avg_hr,
        "max_heart_rate": max_hr,
        "avg_power": avg_power,
        "total_work": total_work,
        "avg_cadence": avg_cadence,
    }
    sport, sub_sport = pick_fit_sport(w)
    messages.append(FitMessage("lap", _compact(summary)))
    messages.append(FitMessage("session", _compact({
        **summary,
        "sport": sport,
        "sub_sport": sub_sport,
        "num_laps": 1,
    })))
    messages.append(FitMessage("activity", {
        "timestamp": end,
        "total_timer_time": total_time,
        "num_sessions": 1,
        "type": "manual",
    }))

    if enhanced_compatibility:
        messages += [
            FitMessage("event", {
                "timestamp": end,
                "event": "timer",
                "event_type": "stop_all",
                "event_group": 0,
            }),
            FitMessage("device_info", {"timestamp": end, **device_info}),
        ]
    return messages


def workout_to_fit(
    w: Workout,
    opts: WorkoutExportOpts | None = None,
    enhanced_compatibility: bool = False,
    *,
    clock: Clock = utc_now,
) -> bytes:
    from mywellness_convert.fit_writer import write_fit

    return write_fit(build_fit_messages(w, opts, enhanced_compatibility, clock=clock))
