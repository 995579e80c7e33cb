"""Schedules, their triggers and the operations a schedules request may ask for."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

MAX_ID_LEN = 8
MAX_NAME_LEN = 32
MAX_INFO_LEN = 128
MAX_OPERATION_LEN = 10


class TriggerType(enum.IntEnum):
    """How a schedule decides when to fire."""

    INVALID = 0
    DAYS_OF_WEEK = 1
    DATE = 2
    RELATIVE = 3


class ScheduleOperation(enum.IntEnum):
    """Operations a schedules request may ask for."""

    INVALID = 0
    ADD = 1
    EDIT = 2
    REMOVE = 3
    ENABLE = 4
    DISABLE = 5


_OPERATION_NAMES = (
    ("add", ScheduleOperation.ADD),
    ("edit", ScheduleOperation.EDIT),
    ("remove", ScheduleOperation.REMOVE),
    ("enable", ScheduleOperation.ENABLE),
    ("disable", ScheduleOperation.DISABLE),
)


def operation_from_str(operation: str | None) -> ScheduleOperation:
    """Return the first operation whose name starts with the given text."""
    if operation is None:
        return ScheduleOperation.INVALID
    for name, op in _OPERATION_NAMES:
        if name.startswith(operation):
            return op
    return ScheduleOperation.INVALID


def _int(data: dict, key: str) -> int | None:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


@dataclass
class Trigger:
    """When a schedule fires.

    ``minutes`` counts from midnight. ``repeat_days`` is a bit set of weekdays
    (Monday is bit 0) and ``repeat_months`` a bit set of months (January is
    bit 0); zero in either means the schedule fires once. ``next_timestamp`` is
    kept for schedules that do not repeat.
    """

    type: TriggerType = TriggerType.INVALID
    relative_seconds: int = 0
    minutes: int = 0
    repeat_days: int = 0
    day: int = 0
    repeat_months: int = 0
    year: int = 0
    repeat_every_year: bool = False
    next_timestamp: int = 0

    @classmethod
    def from_json(cls, data: Any) -> "Trigger":
        """Build a trigger from one element of a schedule's ``triggers`` array."""
        if not isinstance(data, dict):
            return cls()
        trigger = cls(next_timestamp=_int(data, "ts") or 0)
        rsec = _int(data, "rsec")
        if rsec is not None:
            trigger.type = TriggerType.RELATIVE
            trigger.relative_seconds = rsec
            return trigger
        trigger.minutes = (_int(data, "m") or 0) & 0xFFFF
        days = _int(data, "d")
        if days is not None:
            trigger.type = TriggerType.DAYS_OF_WEEK
            trigger.repeat_days = days & 0xFF
        day = _int(data, "dd")
        if day is not None:
            trigger.type = TriggerType.DATE
            trigger.day = day & 0xFF
            trigger.repeat_months = (_int(data, "mm") or 0) & 0xFFFF
            trigger.year = (_int(data, "yy") or 0) & 0xFFFF
            repeat = data.get("r")
            trigger.repeat_every_year = repeat if isinstance(repeat, bool) else False
        return trigger

    def to_json(self) -> dict[str, Any]:
        """Return the trigger as it is reported."""
        if self.type is TriggerType.RELATIVE:
            return {"rsec": self.relative_seconds, "ts": self.next_timestamp}
        doc: dict[str, Any] = {"m": self.minutes}
        if self.type is TriggerType.DAYS_OF_WEEK:
            doc["d"] = self.repeat_days
            if self.repeat_days == 0:
                doc["ts"] = self.next_timestamp
        elif self.type is TriggerType.DATE:
            doc["dd"] = self.day
            doc["mm"] = self.repeat_months
            doc["yy"] = self.year
            doc["r"] = int(self.repeat_every_year)
            if self.repeat_months == 0:
                doc["ts"] = self.next_timestamp
        return doc


@dataclass(eq=False)
class Schedule:
    """A schedule: its identity, state, action and trigger."""

    id: str
    name: str
    index: int = 0
    info: str | None = None
    flags: int = 0
    enabled: bool = False
    action: str | None = None
    trigger: Trigger = field(default_factory=Trigger)
    handle: Any = field(default=None, repr=False)

    def to_json(self) -> dict[str, Any]:
        """Return the schedule as it is reported."""
        doc: dict[str, Any] = {"name": self.name, "id": self.id, "enabled": self.enabled}
        if self.info is not None:
            doc["info"] = self.info
        if self.flags != 0:
            doc["flags"] = self.flags
        if self.action is not None:
            doc["action"] = json.loads(self.action)
        doc["triggers"] = [self.trigger.to_json()]
        return doc


def _passed(trigger: Trigger, now: float) -> bool:
    return 0 < trigger.next_timestamp <= now


def _last_date_timestamp(trigger: Trigger) -> float | None:
    """Local timestamp of the schedule in the last month it repeats in."""
    month_index = trigger.repeat_months.bit_length() - 1
    year = trigger.year + month_index // 12
    month = month_index % 12 + 1
    try:
        base = datetime(year, month, 1)
        moment = base + timedelta(days=trigger.day - 1, minutes=trigger.minutes)
        return moment.timestamp()
    except (ValueError, OverflowError, OSError):
        return None


def is_expired(schedule: Schedule, now: float) -> bool:
    """Tell whether a schedule will never fire again after ``now``."""
    trigger = schedule.trigger
    if trigger.type is TriggerType.RELATIVE:
        return _passed(trigger, now)
    if trigger.type is TriggerType.DAYS_OF_WEEK:
        return trigger.repeat_days == 0 and _passed(trigger, now)
    if trigger.type is TriggerType.DATE:
        if trigger.repeat_months == 0:
            return _passed(trigger, now)
        if trigger.repeat_every_year:
            return False
        last = _last_date_timestamp(trigger)
        if last is None:
            return trigger.year < 1
        return last < now
    return False