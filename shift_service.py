# shift_service.py

import re
from collections import OrderedDict
from dataclasses import dataclass

from errors import ValidationError

TIME_REGEX = r'^([01][0-9]|2[0-3]):[0-5][0-9]$'
SHIFT_SEQUENCE = ["Morning", "Evening", "Night"]
UNRANKED_POSITION = 99
SHIFT_TIMES_SCHEMA_VERSION = 1
DEFAULT_SHIFT_TIMES = OrderedDict([
    ("Morning", {"start": "08:00", "end": "16:00"}),
    ("Evening", {"start": "16:00", "end": "00:00"}),
    ("Night", {"start": "00:00", "end": "08:00"}),
])


@dataclass(frozen=True)
class ShiftWindow:
    name: str
    start: str
    end: str

    @property
    def wraps_midnight(self):
        return self.start > self.end

    def contains(self, time_of_day):
        """True when an HH:MM time falls inside the window, end exclusive."""
        if self.wraps_midnight:
            return time_of_day >= self.start or time_of_day < self.end
        return self.start <= time_of_day < self.end

    def to_dict(self):
        return {"start": self.start, "end": self.end}


class ShiftCatalog:
    """Ordered name -> ShiftWindow mapping.

    Windows are checked in insertion order, so when two windows overlap the
    one configured first wins.
    """

    def __init__(self, windows=()):
        self._windows = OrderedDict((w.name, w) for w in windows)

    @classmethod
    def from_mapping(cls, mapping):
        if not isinstance(mapping, dict):
            raise ValidationError("Shift times must be an object keyed by shift name.")
        windows = []
        for name, times in mapping.items():
            if not isinstance(name, str) or not name.strip():
                raise ValidationError("Shift names must be non-empty strings.")
            if not isinstance(times, dict):
                raise ValidationError(f"Shift '{name}' must have a start and an end.")
            start, end = times.get('start'), times.get('end')
            for value in (start, end):
                if not isinstance(value, str) or not re.match(TIME_REGEX, value):
                    raise ValidationError(f"Shift '{name}' times must be 24-hour HH:MM values.")
            if start == end:
                raise ValidationError(f"Shift '{name}' cannot start and end at the same time.")
            windows.append(ShiftWindow(name=name, start=start, end=end))
        return cls(windows)

    @classmethod
    def default(cls):
        return cls.from_mapping(DEFAULT_SHIFT_TIMES)

    def to_mapping(self):
        return OrderedDict((name, w.to_dict()) for name, w in self._windows.items())

    def get(self, name):
        return self._windows.get(name)

    def __iter__(self):
        return iter(self._windows.values())

    def resolve(self, time_of_day):
        for window in self._windows.values():
            if window.contains(time_of_day):
                return window.name
        return None


def migrate_shift_times(raw):
    """Upgrades a stored shift_times document to the current schema.

    Version 0 was a bare {name: {start, end}} mapping with no envelope.
    """
    if isinstance(raw, dict) and 'schema_version' in raw:
        version = raw['schema_version']
        if version != SHIFT_TIMES_SCHEMA_VERSION:
            raise ValidationError(f"Unsupported shift_times schema version: {version}")
        return raw
    return {"schema_version": SHIFT_TIMES_SCHEMA_VERSION, "windows": raw or {}}


def shift_times_document(catalog):
    return {"schema_version": SHIFT_TIMES_SCHEMA_VERSION, "windows": catalog.to_mapping()}


def shift_position(shift_type):
    """Index of the first canonical shift name contained in shift_type.

    Combined entries such as "Morning+Evening" rank with their first match.
    """
    lowered = (shift_type or '').lower()
    for i, name in enumerate(SHIFT_SEQUENCE):
        if name.lower() in lowered:
            return i
    return UNRANKED_POSITION


def current_shift(now, catalog):
    return catalog.resolve(now.strftime('%H:%M'))


def on_duty(now, roster, catalog):
    shift_name = current_shift(now, catalog)
    if shift_name is None:
        return []
    today_str = now.strftime('%Y-%m-%d')
    return [entry for entry in roster if entry['date'] == today_str and entry['shift_type'] == shift_name]
