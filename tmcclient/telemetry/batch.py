"""Pack a list of LoggableEvents into one upload: a parameter map plus one buffer."""
from __future__ import annotations

from datetime import datetime

from tmcclient.models import LoggableEvent


def format_timestamp(dt: datetime) -> str:
    """Render ``YYYY-MM-DD HH:MM:SS.f`` with trailing fraction zeros trimmed.

    Built from numeric fields only, so the current locale never leaks in.
    """
    fraction = f"{dt.microsecond:06d}".rstrip("0") or "0"
    return (
        f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d}.{fraction}"
    )


def events_to_params(events: list[LoggableEvent]) -> dict[str, str]:
    params: dict[str, str] = {}
    data_offset = 0
    for i, ev in enumerate(events):
        prefix = f"events[{i}]"
        params[f"{prefix}[course_name]"] = ev.course_name
        params[f"{prefix}[exercise_name]"] = ev.exercise_name
        params[f"{prefix}[event_type]"] = ev.event_type
        params[f"{prefix}[happened_at]"] = format_timestamp(ev.happened_at)
        params[f"{prefix}[system_nano_time]"] = str(ev.system_nano_time)
        if ev.details is not None:
            params[f"{prefix}[details]"] = ev.details
        params[f"{prefix}[data_offset]"] = str(data_offset)
        params[f"{prefix}[data_length]"] = str(len(ev.data))
        data_offset += len(ev.data)
    return params


def concat_data(events: list[LoggableEvent]) -> bytes:
    return b"".join(ev.data for ev in events)


def pack_events(events: list[LoggableEvent]) -> tuple[dict[str, str], bytes]:
    """Return (params, data); each event's offset/length slices data exactly."""
    return events_to_params(events), concat_data(events)
