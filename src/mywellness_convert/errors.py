from __future__ import annotations


class ConvertError(Exception):
    """Base class for every condition reported back to the caller of an import/export."""


class JsonParseError(ConvertError):
    """Source text is not valid JSON. Nothing was extracted."""


class SchemaMismatchError(ConvertError):
    """JSON parsed fine but no workouts could be extracted from it."""


class UnsupportedShapeError(ConvertError):
    pass


class ArchiveError(ConvertError):
    pass


class FitValidationError(ConvertError):
    pass


class UnsupportedFormatError(ConvertError):
    pass


class ConfigError(ConvertError):
    """Config file exists but holds a value the converter cannot use."""
