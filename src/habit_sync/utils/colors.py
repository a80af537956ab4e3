"""Calendar color normalization shared by the local store and the server."""

from habit_sync.utils.constants import (
    ALLOWED_CALENDAR_COLORS,
    DEFAULT_CALENDAR_COLOR,
)


def is_allowed_calendar_color(value) -> bool:
    return value in ALLOWED_CALENDAR_COLORS


def normalize_calendar_color(value: str | None) -> str:
    """Map any color string onto an allowed color name.

    Shade suffixes are stripped ("blue-500" -> "blue"); anything
    unrecognized falls back to the default.
    """
    if not value:
        return DEFAULT_CALENDAR_COLOR
    raw = value.strip().lower()
    if raw in ALLOWED_CALENDAR_COLORS:
        return raw
    base = raw.split("-")[0] if "-" in raw else raw
    if base in ALLOWED_CALENDAR_COLORS:
        return base
    return DEFAULT_CALENDAR_COLOR
