from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass
from typing import Any

from mywellness_convert.models import (
    AVG_HR,
    AVG_POWER,
    AVG_SPM,
    FLOORS,
    MAX_HR,
    Metrics,
    SeriesPoint,
)
from mywellness_convert.utils import (
    as_list,
    as_record,
    average,
    coerce_float,
    round_half_up,
    to_meters,
)

# descriptor name (lower-cased) -> canonical channel
CHANNEL_BY_DESCRIPTOR = {
    "power": "watts",
    "runningpower": "watts",
    "spm": "cadence",
    "rpm": "cadence",
    "cadence": "cadence",
    "runningcadence": "cadence",
    "floors": "vertical_m",
    "elevation": "vertical_m",
    "hdistance": "distance",
    "distance": "distance",
}


@dataclass(frozen=True)
class Descriptor:
    name: str  # lower-cased
    unit: str | None = None


@dataclass(frozen=True)
class HrAnchor:
    t_sec: int
    hr: float


@dataclass
class ReconstructedSeries:
    points: list[SeriesPoint]
    # running max of the distance channel, never stored per point
    max_distance_m: float | None = None


def descriptor_channels(descriptors: Any) -> dict[int, Descriptor]:
    """
    Map sample-vector index -> descriptor. Entries look like
    {"i": 0, "pr": {"name": "Spm", "um": "spm"}}; malformed entries are skipped.
    """
    out: dict[int, Descriptor] = {}
    for d in as_list(descriptors):
        rec = as_record(d) or {}
        i = coerce_float(rec.get("i"))
        pr = as_record(rec.get("pr")) or {}
        name = pr.get("name")
        if i is None or not isinstance(name, str):
            continue
        unit = pr.get("um") if isinstance(pr.get("um"), str) else None
        out[int(i)] = Descriptor(name=name.lower(), unit=unit)
    return out


def build_hr_anchors(hr_samples: Any) -> list[HrAnchor]:
    """
    Sparse {t, hr} samples -> anchors keyed by the nearest whole second.
    A later sample landing on the same second replaces the earlier one.
    """
    by_t: dict[int, float] = {}
    for h in as_list(hr_samples):
        rec = as_record(h) or {}
        t = coerce_float(rec.get("t"))
        hr = coerce_float(rec.get("hr"))
        if t is None or hr is None:
            continue
        by_t[round_half_up(t)] = hr
    return [HrAnchor(t_sec=t, hr=hr) for t, hr in sorted(by_t.items())]


class HrInterpolator:
    """
    Heart rate at an arbitrary offset from a set of anchors.

      - no anchors  -> None
      - one anchor  -> that value everywhere
      - t <= first  -> first value; t >= last -> last value
      - a.t < t <= b.t for adjacent anchors -> linear between a and b
        (equal timestamps return b's value)
    """

    def __init__(self, anchors: list[HrAnchor]):
        self.anchors = sorted(anchors, key=lambda a: a.t_sec)
        self._ts = [a.t_sec for a in self.anchors]

    def __len__(self) -> int:
        return len(self.anchors)

    def __call__(self, t: float) -> float | None:
        anchors = self.anchors
        if not anchors:
            return None
        if len(anchors) == 1:
            return anchors[0].hr
        if t <= anchors[0].t_sec:
            return anchors[0].hr
        if t >= anchors[-1].t_sec:
            return anchors[-1].hr

        i = bisect_left(self._ts, t)
        a, b = anchors[i - 1], anchors[i]
        span = b.t_sec - a.t_sec
        if span <= 0:
            return b.hr
        return a.hr + (b.hr - a.hr) * (t - a.t_sec) / span


def reconstruct_series(analytics: Any) -> ReconstructedSeries:
    """
    Decode the detail page's `analitics` block into an ordered SeriesPoint list.

    Each sample is {"t": seconds, "vs": [...]} where vs[i] belongs to descriptor i.
    Heart rate comes from the separate sparse `hr` array and is interpolated onto
    every sample offset; the per-sample value is never taken verbatim.
    """
    block = as_record(analytics) or {}
    descriptors = descriptor_channels(block.get("descriptor"))
    hr_at = HrInterpolator(build_hr_anchors(block.get("hr")))

    points: list[SeriesPoint] = []
    max_distance_m: float | None = None

    for s in as_list(block.get("samples")):
        rec = as_record(s) or {}
        t = coerce_float(rec.get("t"))
        if t is None:
            continue

        point = SeriesPoint(t_sec=max(0, round_half_up(t)))
        for idx, raw_value in enumerate(as_list(rec.get("vs"))):
            value = coerce_float(raw_value)
            desc = descriptors.get(idx)
            if value is None or desc is None:
                continue
            channel = CHANNEL_BY_DESCRIPTOR.get(desc.name)
            if channel == "watts":
                point.watts = value
            elif channel == "cadence":
                point.cadence = value
            elif channel == "vertical_m":
                point.vertical_m = to_meters(value, desc.unit)
            elif channel == "distance":
                dist_m = to_meters(value, desc.unit)
                max_distance_m = dist_m if max_distance_m is None else max(max_distance_m, dist_m)

        hr = hr_at(point.t_sec)
        if hr is not None:
            point.hr = round_half_up(hr)
        points.append(point)

    points.sort(key=lambda p: p.t_sec)
    return ReconstructedSeries(points=points, max_distance_m=max_distance_m)


def summarize_series(points: list[SeriesPoint]) -> Metrics:
    """Aggregate metrics (lap/session summary values) derived once from a finished series."""
    hrs = [p.hr for p in points if p.hr is not None]
    watts = [p.watts for p in points if p.watts is not None]
    cadences = [p.cadence for p in points if p.cadence is not None]
    verticals = [p.vertical_m for p in points if p.vertical_m is not None]

    metrics: Metrics = {}
    if hrs:
        metrics[AVG_HR] = average(hrs)
        metrics[MAX_HR] = max(hrs)
    if watts:
        metrics[AVG_POWER] = average(watts)
    if cadences:
        metrics[AVG_SPM] = average(cadences)
    if verticals:
        metrics[FLOORS] = max(verticals)
    return metrics
