from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from mywellness_convert.config import DEFAULT_CONFIG_FILE, Settings, load_settings, save_settings
from mywellness_convert.errors import ConvertError
from mywellness_convert.importer import (
    decode_json_bytes,
    export_all,
    import_archive,
    parse_json_text,
)
from mywellness_convert.models import EXPORT_FORMATS, SOURCE_SHAPES, SourceShape, Workout
from mywellness_convert.utils import format_duration
from mywellness_convert.validate import validate_fit

# CLI flag -> WorkoutExportOpts attribute it switches off
OPT_OUT_FLAGS = {
    "no_hr": "include_hr_series",
    "no_cadence": "include_cadence_series",
    "no_power": "include_power_series",
    "no_calories": "include_calories",
    "no_distance": "include_distance",
    "no_altitude": "include_vertical_as_altitude",
}


def load_workouts(path: Path, shape: SourceShape, start_time: str | None) -> list[Workout]:
    """A .zip is read as a full export; anything else as one JSON document of `shape`."""
    if path.suffix.lower() == ".zip":
        return import_archive(path)
    data = sys.stdin.buffer.read() if str(path) == "-" else path.read_bytes()
    text = decode_json_bytes(data)
    return parse_json_text(text, shape, preferred_start_time=start_time)


def apply_opt_overrides(workouts: list[Workout], args: argparse.Namespace) -> None:
    for w in workouts:
        for flag, attr in OPT_OUT_FLAGS.items():
            if getattr(args, flag, False):
                setattr(w.export_opts, attr, False)
        if getattr(args, "notes", False):
            w.export_opts.include_metrics_in_notes = True


def cmd_convert(args: argparse.Namespace, settings: Settings) -> int:
    fmt = args.format or settings.export_format
    enhanced = args.enhanced or settings.enhanced_fit
    out = Path(args.out).expanduser() if args.out else settings.output_dir

    workouts = load_workouts(
        Path(args.input), args.shape or settings.shape, args.start_time or settings.start_time
    )
    apply_opt_overrides(workouts, args)

    if args.zip:
        out = out.with_suffix(".zip") if out.suffix.lower() != ".zip" else out
    written = export_all(workouts, fmt, out, enhanced_compatibility=enhanced, as_zip=args.zip)

    for name in written:
        print(f"  {name}")
    print(f"Wrote {len(written)} {fmt.upper()} file(s) to {out}")
    return 0


def cmd_inspect(args: argparse.Namespace, settings: Settings) -> int:
    workouts = load_workouts(
        Path(args.input), args.shape or settings.shape, args.start_time or settings.start_time
    )
    for w in workouts:
        opts = w.export_opts
        enabled = [name.removeprefix("include_") for name, on in vars(opts).items() if on]
        print(f"{w.uid}  {w.activity_name}")
        print(f"  start:    {w.started_at_iso or '-'}")
        print(f"  duration: {format_duration(w.duration_sec)}")
        print(f"  series:   {len(w.series or [])} points")
        print(f"  metrics:  {', '.join(w.metric_keys) or '-'}")
        print(f"  export:   {', '.join(enabled) or '-'}")
    return 0


def cmd_validate(args: argparse.Namespace, settings: Settings) -> int:
    failed = 0
    for p in args.files:
        try:
            summary = validate_fit(Path(p).read_bytes())
        except ConvertError as e:
            print(f"[fail] {p}: {e}")
            failed += 1
            continue
        print(f"[ok] {p}: {summary}")
    return 1 if failed else 0


def cmd_init_config(args: argparse.Namespace, settings: Settings) -> int:
    path = save_settings(settings, Path(args.config) if args.config else None)
    print(f"Wrote {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mywellness-convert",
        description="Convert Technogym/MyWellness workout JSON to TCX or FIT.",
    )
    parser.add_argument("--config", help=f"INI file with defaults (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress details.")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_input(p: argparse.ArgumentParser) -> None:
        p.add_argument("input", help="MyWellness export .zip, a JSON file, or - for stdin")
        p.add_argument("--shape", choices=SOURCE_SHAPES, help="Shape of a JSON input.")
        p.add_argument(
            "--start-time",
            help="HH:MM[:SS] start time applied to a single-workout page's date.",
        )

    convert = sub.add_parser("convert", help="Write TCX/FIT files.")
    add_input(convert)
    convert.add_argument("--format", choices=EXPORT_FORMATS)
    convert.add_argument(
        "--enhanced",
        action="store_true",
        help="Add creator/device/timer messages for stricter FIT importers.",
    )
    convert.add_argument("--out", help="Output directory (or ZIP path with --zip).")
    convert.add_argument("--zip", action="store_true", help="Bundle all files into one ZIP.")
    convert.add_argument("--no-hr", action="store_true", help="Leave heart rate out.")
    convert.add_argument("--no-cadence", action="store_true", help="Leave cadence out.")
    convert.add_argument("--no-power", action="store_true", help="Leave power out.")
    convert.add_argument("--no-calories", action="store_true", help="Leave calories out.")
    convert.add_argument("--no-distance", action="store_true", help="Leave distance out.")
    convert.add_argument(
        "--no-altitude", action="store_true", help="Do not map vertical metres onto altitude."
    )
    convert.add_argument("--notes", action="store_true", help="List all metrics in the TCX notes.")
    convert.set_defaults(func=cmd_convert)

    inspect = sub.add_parser("inspect", help="Show what was found in an export.")
    add_input(inspect)
    inspect.set_defaults(func=cmd_inspect)

    validate = sub.add_parser("validate", help="Check FIT files can be read back.")
    validate.add_argument("files", nargs="+")
    validate.set_defaults(func=cmd_validate)

    init = sub.add_parser("init-config", help="Write a config file with the current defaults.")
    init.set_defaults(func=cmd_init_config)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        settings = load_settings(Path(args.config) if args.config else None)
        return args.func(args, settings)
    except (ConvertError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
