from __future__ import annotations

import configparser
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path

from mywellness_convert.errors import ConfigError
from mywellness_convert.models import EXPORT_FORMATS, SOURCE_SHAPES

DEFAULT_CONFIG_FILE = Path("~/.config/mywellness-convert/config.ini").expanduser()


@dataclass
class Settings:
    # [export]
    export_format: str = "tcx"
    enhanced_fit: bool = False
    output_dir: Path = Path("mywellness-export")
    # [import]
    shape: str = "single-detail"
    start_time: str = "12:00"


def load_settings(config_file: Path | None = None) -> Settings:
    """
    Read defaults from an INI file:

        [export]
        format = fit
        enhanced_fit = yes
        output_dir = ~/Downloads/mywellness

        [import]
        shape = single-detail
        start_time = 07:30

    Missing file, sections or keys fall back to the dataclass defaults.
    Unreadable files and unknown format or shape values raise ConfigError.
    """
    path = config_file or DEFAULT_CONFIG_FILE
    s = Settings()
    cfg = ConfigParser()
    if not path.exists():
        return s

    try:
        cfg.read(path)
        s.export_format = cfg.get("export", "format", fallback=s.export_format).strip().lower()
        s.enhanced_fit = cfg.getboolean("export", "enhanced_fit", fallback=s.enhanced_fit)
        s.output_dir = Path(cfg.get("export", "output_dir", fallback=str(s.output_dir))).expanduser()
        s.shape = cfg.get("import", "shape", fallback=s.shape).strip().lower()
        s.start_time = cfg.get("import", "start_time", fallback=s.start_time).strip()
    except (configparser.Error, ValueError) as e:
        raise ConfigError(f"{path}: {e}") from e

    if s.export_format not in EXPORT_FORMATS:
        raise ConfigError(f"{path}: unknown export format {s.export_format!r}")
    if s.shape not in SOURCE_SHAPES:
        raise ConfigError(f"{path}: unknown import shape {s.shape!r}")
    return s

    cfg.read(path)
    s.export_format = cfg.get("export", "format", fallback=s.export_format).strip().lower()
    s.enhanced_fit = cfg.getboolean("export", "enhanced_fit", fallback=s.enhanced_fit)
    s.output_dir = Path(cfg.get("export", "output_dir", fallback=str(s.output_dir))).expanduser()
    s.shape = cfg.get("import", "shape", fallback=s.shape).strip().lower()
    s.start_time = cfg.get("import", "start_time", fallback=s.start_time).strip()
    return s


def save_settings(s: Settings, config_file: Path | None = None) -> Path:
    path = config_file or DEFAULT_CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)

    cfg = ConfigParser()
    cfg["export"] = {
        "format": s.export_format,
        "enhanced_fit": "yes" if s.enhanced_fit else "no",
        "output_dir": str(s.output_dir),
    }
    cfg["import"] = {"shape": s.shape, "start_time": s.start_time}
    with path.open("w", encoding="utf-8") as f:
        cfg.write(f)
    return path
