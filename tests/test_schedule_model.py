import json
from datetime import datetime

import pytest

from nodeagent.schedule_model import (
    Schedule,
    ScheduleOperation,
    Trigger,
    TriggerType,
    is_expired,
    operation_from_str,
)

NOW = datetime(2024, 6, 1, 12, 0).timestamp()


@pytest.mark.parametrize(
    "text, expected",
    [
        ("add", ScheduleOperation.ADD),
        ("edit", ScheduleOperation.EDIT),
        ("remove", ScheduleOperation.REMOVE),
        ("enable", ScheduleOperation.ENABLE),
        ("disable", ScheduleOperation.DISABLE),
        ("e", ScheduleOperation.EDIT),
        ("en", ScheduleOperation.ENABLE),
        ("dis", ScheduleOperation.DISABLE),
        ("", ScheduleOperation.ADD),
        ("addd", ScheduleOperation.INVALID),
        ("xyz", ScheduleOperation.INVALID),
        (None, ScheduleOperation.INVALID),
    ],
)
def test_operation_from_str(text, expected):
    assert operation_from_str(text) is expected


def test_relative_trigger_parse():
    trig = Trigger.from_json({"rsec": 30, "ts": 1700, "m": 5})
    assert trig.type is TriggerType.RELATIVE
    assert trig.relative_seconds == 30
    assert trig.next_timestamp == 1700
    assert trig.minutes == 0
    assert trig.to_json() == {"rsec": 30, "ts": 1700}


def test_days_trigger_parse_and_report():
    trig = Trigger.from_json({"m": 110, "d": 31})
    assert trig.type is TriggerType.DAYS_OF_WEEK
    assert trig.minutes == 110
    assert trig.repeat_days == 31
    assert trig.to_json() == {"m": 110, "d": 31}


def test_one_time_days_trigger_reports_timestamp():
    trig = Trigger.from_json({"m": 10, "d": 0, "ts": 1234})
    assert trig.to_json() == {"m": 10, "d": 0, "ts": 1234}


def test_date_trigger_parse():
    trig = Trigger.from_json({"m": 60, "dd": 15, "mm": 3, "yy": 2030, "r": True})
    assert trig.type is TriggerType.DATE
    assert (trig.day, trig.repeat_months, trig.year) == (15, 3, 2030)
    assert trig.repeat_every_year is True
    assert trig.to_json() == {"m": 60, "dd": 15, "mm": 3, "yy": 2030, "r": 1}


@pytest.mark.parametrize(
    "doc",
    [
        {"rsec": 5, "ts": 99},
        {"m": 90, "d": 3},
        {"m": 90, "d": 0, "ts": 42},
        {"m": 0, "dd": 1, "mm": 0, "yy": 2031, "r": 0, "ts": 7},
        {"m": 15, "dd": 28, "mm": 4095, "yy": 2031, "r": 1},
    ],
)
def test_trigger_round_trip(doc):
    trig = Trigger.from_json(doc)
    assert Trigger.from_json(trig.to_json()) == trig


def test_non_object_trigger_is_invalid():
    trig = Trigger.from_json([1, 2])
    assert trig == Trigger()
    assert trig.to_json() == {"m": 0}


def test_schedule_to_json():
    sched = Schedule(
        id="ab12",
        name="Morning",
        enabled=True,
        info="extra",
        flags=2,
        action='{"Light":{"Power":true}}',
        trigger=Trigger.from_json({"m": 420, "d": 31}),
    )
    doc = sched.to_json()
    assert list(doc) == ["name", "id", "enabled", "info", "flags", "action", "triggers"]
    assert doc["action"] == {"Light": {"Power": True}}
    assert doc["triggers"] == [{"m": 420, "d": 31}]
    assert json.loads(json.dumps(doc))["name"] == "Morning"


def test_schedule_to_json_omits_empty_fields():
    doc = Schedule(id="x", name="n").to_json()
    assert "info" not in doc
    assert "flags" not in doc
    assert doc["enabled"] is False


def test_relative_expiry():
    sched = Schedule(id="a", name="a", trigger=Trigger(TriggerType.RELATIVE, next_timestamp=100))
    assert is_expired(sched, 200) is True
    assert is_expired(sched, 50) is False
    sched.trigger.next_timestamp = 0
    assert is_expired(sched, 200) is False


def test_days_expiry_only_for_one_time():
    trig = Trigger(TriggerType.DAYS_OF_WEEK, repeat_days=0, next_timestamp=100)
    sched = Schedule(id="a", name="a", trigger=trig)
    assert is_expired(sched, 200) is True
    trig.repeat_days = 1
    assert is_expired(sched, 200) is False


def test_date_one_time_expiry():
    trig = Trigger(TriggerType.DATE, repeat_months=0, next_timestamp=100)
    sched = Schedule(id="a", name="a", trigger=trig)
    assert is_expired(sched, 200) is True
    assert is_expired(sched, 99) is False


def test_date_repeating_expiry_uses_year():
    past = Trigger(TriggerType.DATE, day=1, repeat_months=0b1, year=2023)
    future = Trigger(TriggerType.DATE, day=1, repeat_months=0b1, year=2025)
    assert is_expired(Schedule(id="p", name="p", trigger=past), NOW) is True
    assert is_expired(Schedule(id="f", name="f", trigger=future), NOW) is False


def test_date_repeating_uses_last_month():
    trig = Trigger(TriggerType.DATE, day=1, repeat_months=0b1 | (1 << 11), year=2024)
    assert is_expired(Schedule(id="d", name="d", trigger=trig), NOW) is False


def test_date_every_year_never_expires():
    trig = Trigger(
        TriggerType.DATE, day=1, repeat_months=1, year=2000, repeat_every_year=True
    )
    assert is_expired(Schedule(id="y", name="y", trigger=trig), NOW) is False


def test_invalid_trigger_never_expires():
    sched = Schedule(id="i", name="i", trigger=Trigger(next_timestamp=1))
    assert is_expired(sched, NOW) is False