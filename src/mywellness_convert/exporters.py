from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from xml.etree.ElementTree import Element, SubElement, tostring

from mywellness_convert.models import (
    AVG_HR,
    AVG_POWER,
    DURATION,
    MAX_HR,
    MOVE,
    Clock,
    Workout,
    WorkoutExportOpts,
    utc_now,
)
from mywellness_convert.normalize import pick_cadence_spm
from mywellness_convert.utils import as_record, parse_iso, round_half_up, to_iso_z

SYNTHETIC_STEP_SEC = 5

TCD_NS = "http://www.garmin.com/xmlschemas/TrainingCenterDatabase/v2"
TPX_NS = "http://www.garmin.com/xmlschemas/ActivityExtension/v2"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

DEFAULT_NOTES = "Generated from Mywellness export."


# ---------- Helpers shared by the TCX and FIT encoders ----------


def resolve_start(w: Workout, clock: Clock = utc_now) -> datetime:
    """
    Wall-clock start of the workout:
      1) the normalized start timestamp
      2) the raw record's `on` / `performedDate`
      3) clock() (non-deterministic; inject a fixed clock in tests)
    """
    raw = as_record(w.raw) or {}
    for candidate in (w.started_at_iso, raw.get("on"), raw.get("performedDate")):
        dt = parse_iso(candidate)
        if dt is not None:
            return dt
    return clock()


def prorate(total: float | None, t: float, span: float) -> float | None:
    """Linear share of `total` at offset t over span seconds; None when there is no total."""
    if total is None:
        return None
    if span <= 0:
        return 0.0
    return total * (t / span)


def series_altitude(
    point_vertical_m: float | None,
    total_vertical_m: float | None,
    t: float,
    span: float,
) -> float | None:
    """A point's own vertical reading wins; otherwise the workout total pro-rated by offset."""
    if point_vertical_m is not None:
        return point_vertical_m
    if span <= 0:
        return None
    return prorate(total_vertical_m, t, span)


def synthetic_offsets(total_seconds: int) -> list[int]:
    """Fixed 5 s cadence used when a workout has no series: at least 2 points, floor(d/5)+1 otherwise."""
    n = max(2, total_seconds // SYNTHETIC_STEP_SEC + 1) if total_seconds > 0 else 2
    return [min(total_seconds, i * SYNTHETIC_STEP_SEC) for i in range(n)]


@dataclass(frozen=True)
class ExportContext:
    """Workout-level values both encoders derive once from (Workout, opts)."""

    total_seconds: int
    total_distance_m: float | None
    total_vertical_m: float | None
    calories: float | None
    avg_hr: float | None
    max_hr: float | None
    avg_power: float | None
    default_cadence: float | None
    default_watts: int | None

    @property
    def constant_hr(self) -> int | None:
        hr = self.avg_hr if self.avg_hr is not None else self.max_hr
        return round_half_up(hr) if hr is not None else None

    @classmethod
    def build(cls, w: Workout, opts: WorkoutExportOpts) -> ExportContext:
        m = w.metrics
        avg_power = m.get(AVG_POWER)

        # Cadence (spm): explicit field, else Move reps over the duration in minutes
        default_cadence = None
        if opts.include_cadence_series:
            default_cadence = pick_cadence_spm(m)
            if default_cadence is None:
                move = m.get(MOVE)
                dur = m.get(DURATION)
                if dur is None:
                    dur = w.duration_sec or 0
                if move is not None and dur > 0:
                    default_cadence = move / (dur / 60)

        return cls(
            total_seconds=max(0, round_half_up(w.duration_sec or 0)),
            total_distance_m=w.distance_m if opts.include_distance else None,
            total_vertical_m=w.vertical_m if opts.include_vertical_as_altitude else None,
            calories=w.calories if opts.include_calories else None,
            avg_hr=m.get(AVG_HR),
            max_hr=m.get(MAX_HR),
            avg_power=avg_power,
            default_cadence=default_cadence,
            default_watts=(
                round_half_up(avg_power)
                if opts.include_power_series and avg_power is not None
                else None
            ),
        )


def _fmt_number(v: float) -> str:
    if float(v).is_integer():
        return str(int(v))
    return repr(float(v))


def metrics_notes(w: Workout) -> str:
    return "Mywellness metrics: " + ", ".join(f"{k}={_fmt_number(v)}" for k, v in w.metrics.items())


def pick_tcx_sport(activity_name: str) -> str:
    a = (activity_name or "").lower()
    if "run" in a:
        return "Running"
    if "cycle" in a or "bike" in a or "ride" in a:
        return "Biking"
    return "Other"


# ---------- TCX exporter ----------


@dataclass
class _Trackpoint:
    t_sec: int
    distance_m: float
    altitude_m: float | None = None
    hr: int | None = None
    cadence: int | None = None
    watts: int | None = None


def _series_trackpoints(w: Workout, opts: WorkoutExportOpts, ctx: ExportContext) -> list[_Trackpoint]:
    points = w.sorted_series()
    span = max(ctx.total_seconds, points[-1].t_sec)
    cadence = round_half_up(ctx.default_cadence) if ctx.default_cadence is not None else None

    out: list[_Trackpoint] = []
    for p in points:
        t = max(0, round_half_up(p.t_sec))
        tp = _Trackpoint(t_sec=t, distance_m=prorate(ctx.total_distance_m, t, span) or 0.0)
        if opts.include_hr_series and p.hr is not None:
            tp.hr = round_half_up(p.hr)
        if opts.include_cadence_series:
            tp.cadence = round_half_up(p.cadence) if p.cadence is not None else cadence
        if opts.include_power_series:
            tp.watts = round_half_up(p.watts) if p.watts is not None else ctx.default_watts
        if opts.include_vertical_as_altitude:
            tp.altitude_m = series_altitude(p.vertical_m, ctx.total_vertical_m, t, span)
        out.append(tp)
    return out


def _synthetic_trackpoints(opts: WorkoutExportOpts, ctx: ExportContext) -> list[_Trackpoint]:
    # HR is the constant average (or max): deliberately approximate, never interpolated
    hr = ctx.constant_hr if opts.include_hr_series else None
    cadence = round_half_up(ctx.default_cadence) if ctx.default_cadence is not None else None
    total = ctx.total_seconds
    return [
        _Trackpoint(
            t_sec=t,
            distance_m=prorate(ctx.total_distance_m, t, total) or 0.0,
            altitude_m=prorate(ctx.total_vertical_m, t, total) if total > 0 else None,
            hr=hr,
            cadence=cadence,
            watts=ctx.default_watts,
        )
        for t in synthetic_offsets(total)
    ]


def workout_to_tcx(
    w: Workout,
    opts: WorkoutExportOpts | None = None,
    *,
    clock: Clock = utc_now,
) -> str:
    """
    Build a TCX (Garmin Training Center XML) document for one workout.

    Trackpoint timeline:
      1) the workout series when present (sorted by offset)
      2) synthetic points every 5 s across the duration otherwise

    Units:
      - DistanceMeters / AltitudeMeters: meters, pro-rated over the timeline
        when the source only has totals
      - Cadence: steps (or revolutions) per minute
      - TPX Watts: power (W)

    Optional per-point elements are left out entirely when the option is off
    or there is no value.
    """
    opts = opts if opts is not None else w.export_opts
    ctx = ExportContext.build(w, opts)
    start = resolve_start(w, clock)
    start_iso = to_iso_z(start)

    if w.has_series:
        points = _series_trackpoints(w, opts, ctx)
    else:
        points = _synthetic_trackpoints(opts, ctx)

    tcx = Element(
        "TrainingCenterDatabase",
        {
            "xmlns": TCD_NS,
            "xmlns:xsi": XSI_NS,
            "xmlns:tpx": TPX_NS,
            "xsi:schemaLocation": (
                f"{TCD_NS} http://www.garmin.com/xmlschemas/TrainingCenterDatabasev2.xsd"
            ),
        },
    )
    activities = SubElement(tcx, "Activities")
    act_node = SubElement(activities, "Activity", {"Sport": pick_tcx_sport(w.activity_name)})
    SubElement(act_node, "Id").text = start_iso

    lap = SubElement(act_node, "Lap", {"StartTime": start_iso})
    SubElement(lap, "TotalTimeSeconds").text = str(ctx.total_seconds)
    SubElement(lap, "DistanceMeters").text = (
        f"{ctx.total_distance_m:.1f}" if ctx.total_distance_m is not None else "0"
    )
    if ctx.calories is not None:
        SubElement(lap, "Calories").text = str(max(0, round_half_up(ctx.calories)))
    SubElement(lap, "Intensity").text = "Active"
    SubElement(lap, "TriggerMethod").text = "Manual"

    track = SubElement(lap, "Track")
    for p in points:
        tp = SubElement(track, "Trackpoint")
        SubElement(tp, "Time").text = to_iso_z(start + timedelta(seconds=p.t_sec))
        if p.altitude_m is not None:
            SubElement(tp, "AltitudeMeters").text = f"{p.altitude_m:.1f}"
        SubElement(tp, "DistanceMeters").text = f"{p.distance_m:.1f}"
        if p.hr is not None:
            hr = SubElement(tp, "HeartRateBpm")
            SubElement(hr, "Value").text = str(p.hr)
        if p.cadence is not None:
            SubElement(tp, "Cadence").text = str(p.cadence)
        if p.watts is not None:
            ext = SubElement(tp, "Extensions")
            tpx = SubElement(ext, "tpx:TPX")
            SubElement(tpx, "tpx:Watts").text = str(p.watts)

    SubElement(act_node, "Notes").text = (
        metrics_notes(w) if opts.include_metrics_in_notes else DEFAULT_NOTES
    )

    return tostring(tcx, encoding="utf-8", xml_declaration=True).decode("utf-8")
