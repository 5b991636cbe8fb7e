from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from fit_tool.fit_file_builder import FitFileBuilder
from fit_tool.profile.messages.activity_message import ActivityMessage
from fit_tool.profile.messages.device_info_message import DeviceInfoMessage
from fit_tool.profile.messages.event_message import EventMessage
from fit_tool.profile.messages.file_creator_message import FileCreatorMessage
from fit_tool.profile.messages.file_id_message import FileIdMessage
from fit_tool.profile.messages.lap_message import LapMessage
from fit_tool.profile.messages.record_message import RecordMessage
from fit_tool.profile.messages.session_message import SessionMessage
from fit_tool.profile.profile_type import (
    Activity,
    Event,
    EventType,
    FileType,
    Manufacturer,
    Sport,
    SubSport,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from mywellness_convert.fit_export import FitMessage

logger = logging.getLogger(__name__)

MESSAGE_CLASSES = {
    "file_id": FileIdMessage,
    "file_creator": FileCreatorMessage,
    "device_info": DeviceInfoMessage,
    "event": EventMessage,
    "record": RecordMessage,
    "lap": LapMessage,
    "session": SessionMessage,
    "activity": ActivityMessage,
}

# (message, field) -> profile enum that string values name, e.g. "stair_climbing"
ENUM_FIELDS: dict[tuple[str, str], type[Enum]] = {
    ("file_id", "type"): FileType,
    ("file_id", "manufacturer"): Manufacturer,
    ("device_info", "manufacturer"): Manufacturer,
    ("event", "event"): Event,
    ("event", "event_type"): EventType,
    ("session", "sport"): Sport,
    ("session", "sub_sport"): SubSport,
    ("activity", "type"): Activity,
}


def _to_fit_value(message: str, name: str, value: Any) -> Any:
    if isinstance(value, datetime):
        # fit_tool takes timestamps as milliseconds since the Unix epoch
        return round(value.timestamp() * 1000)
    enum_cls = ENUM_FIELDS.get((message, name))
    if enum_cls is not None and isinstance(value, str):
        return enum_cls[value.upper()]
    return value


def to_fit_tool_message(msg: FitMessage):
    cls = MESSAGE_CLASSES.get(msg.name)
    if cls is None:
        raise ValueError(f"Unsupported FIT message: {msg.name!r}")

    out = cls()
    for name, value in msg.fields.items():
        if value is None:
            continue
        if not hasattr(cls, name):
            logger.debug("fit_tool %s has no field %r, skipping", cls.__name__, name)
            continue
        setattr(out, name, _to_fit_value(msg.name, name, value))
    return out


def write_fit(messages: Iterable[FitMessage]) -> bytes:
    """Serialize ordered message dictionaries to a FIT file with fit_tool."""
    builder = FitFileBuilder(auto_define=True, min_string_size=50)
    for msg in messages:
        builder.add(to_fit_tool_message(msg))
    return builder.build().to_bytes()
