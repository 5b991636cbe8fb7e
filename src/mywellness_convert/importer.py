from __future__ import annotations

import json
import logging
import zipfile
import zlib
from datetime import timezone
from typing import TYPE_CHECKING

from mywellness_convert.errors import (
    ArchiveError,
    JsonParseError,
    SchemaMismatchError,
    UnsupportedFormatError,
)
from mywellness_convert.exporters import workout_to_tcx
from mywellness_convert.fit_export import workout_to_fit
from mywellness_convert.models import (
    EXPORT_FORMATS,
    Clock,
    ExportFormat,
    SourceShape,
    Workout,
    utc_now,
)
from mywellness_convert.normalize import normalize
from mywellness_convert.utils import parse_iso

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)

# archive basename prefix -> source shape; everything else in the export
# (masterdata, biometrics, ...) is never opened
ARCHIVE_PREFIXES: dict[str, SourceShape] = {
    "indooractivities-": "indoor",
    "outdooractivities-": "outdoor",
}


def decode_json_bytes(data: bytes) -> str:
    """Raw file contents -> text; anything that is not UTF-8 is reported as a JSON parse failure."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise JsonParseError(f"Not UTF-8 text: {e}") from e


def parse_json_text(
    text: str,
    shape: SourceShape,
    *,
    preferred_start_time: str | None = None,
    clock: Clock = utc_now,
) -> list[Workout]:
    """
    JSON text of one declared shape -> workouts.

    Raises JsonParseError when the text is not JSON and SchemaMismatchError
    when it is JSON but yields no workout.
    """
    stripped = (text or "").strip()
    if not stripped:
        raise JsonParseError("No JSON text supplied")
    try:
        obj = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise JsonParseError(f"Invalid JSON: {e}") from e

    workouts = normalize(obj, shape, preferred_start_time=preferred_start_time, clock=clock)
    if not workouts:
        raise SchemaMismatchError(f"No {shape} workouts found in this JSON")
    return workouts


def _archive_shape(name: str) -> SourceShape | None:
    basename = name.lower().rsplit("/", 1)[-1]
    if not basename.endswith(".json"):
        return None
    for prefix, shape in ARCHIVE_PREFIXES.items():
        if basename.startswith(prefix):
            return shape
    return None


def read_archive(path: Path) -> Iterator[tuple[str, SourceShape, bytes]]:
    """
    Yield (entry name, shape, raw bytes) for every activity JSON entry in a
    MyWellness export ZIP. Entries whose compressed data is damaged are logged
    and skipped.
    """
    try:
        zf = zipfile.ZipFile(path)
    except (OSError, zipfile.BadZipFile) as e:
        raise ArchiveError(f"Failed to read ZIP: {e}") from e

    with zf:
        targets = [(n, _archive_shape(n)) for n in zf.namelist()]
        targets = [(n, s) for n, s in targets if s is not None]
        if not targets:
            raise ArchiveError(
                "Could not find indooractivities-*.json or outdooractivities-*.json "
                "in this ZIP. Make sure it is a full MyWellness export."
            )
        for name, shape in targets:
            try:
                data = zf.read(name)
            except (zipfile.BadZipFile, zlib.error) as e:
                logger.warning("Skipping %s: damaged ZIP entry (%s)", name, e)
                continue
            yield name, shape, data


def import_archive(path: Path, *, clock: Clock = utc_now) -> list[Workout]:
    workouts: list[Workout] = []
    for name, shape, data in read_archive(path):
        try:
            found = parse_json_text(decode_json_bytes(data), shape, clock=clock)
        except (JsonParseError, SchemaMismatchError) as e:
            logger.warning("Skipping %s: %s", name, e)
            continue
        logger.info("%s: %d %s workouts", name, len(found), shape)
        workouts.extend(found)

    if not workouts:
        raise SchemaMismatchError(
            "Found activity files but couldn't parse any workouts. The export schema may differ."
        )
    return workouts


def sort_newest_first(workouts: Iterable[Workout]) -> list[Workout]:
    def key(w: Workout) -> float:
        dt = parse_iso(w.started_at_iso)
        return dt.timestamp() if dt else 0.0

    return sorted(workouts, key=key, reverse=True)


def export_filename(w: Workout, fmt: ExportFormat, *, clock: Clock = utc_now) -> str:
    """mywellness-<source>-<YYYY-MM-DDTHHMMSSZ>-<id>.<fmt>, start time in UTC."""
    dt = parse_iso(w.started_at_iso) or clock()
    token = dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H%M%SZ")
    return f"mywellness-{w.source}-{token}-{w.id}.{fmt}"


def render(
    w: Workout,
    fmt: ExportFormat,
    *,
    enhanced_compatibility: bool = False,
    clock: Clock = utc_now,
) -> bytes:
    """Encode one workout with its own current export options."""
    if fmt == "fit":
        return workout_to_fit(w, w.export_opts, enhanced_compatibility, clock=clock)
    if fmt == "tcx":
        return workout_to_tcx(w, w.export_opts, clock=clock).encode("utf-8")
    raise UnsupportedFormatError(f"Unknown export format: {fmt!r}")


def export_all(
    workouts: Iterable[Workout],
    fmt: ExportFormat,
    out: Path,
    *,
    enhanced_compatibility: bool = False,
    as_zip: bool = False,
    clock: Clock = utc_now,
) -> list[str]:
    """
    Encode workouts one after another into `out` (a directory, or a ZIP file
    when as_zip is set). Returns the written file names, newest workout first.
    """
    if fmt not in EXPORT_FORMATS:
        raise UnsupportedFormatError(f"Unknown export format: {fmt!r}")
    written: list[str] = []
    ordered = sort_newest_first(workouts)

    if as_zip:
        out.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for w in ordered:
                name = export_filename(w, fmt, clock=clock)
                data = render(w, fmt, enhanced_compatibility=enhanced_compatibility, clock=clock)
                zf.writestr(name, data)
                written.append(name)
        return written

    out.mkdir(parents=True, exist_ok=True)
    for w in ordered:
        name = export_filename(w, fmt, clock=clock)
        (out / name).write_bytes(
            render(w, fmt, enhanced_compatibility=enhanced_compatibility, clock=clock)
        )
        written.append(name)
    return written
