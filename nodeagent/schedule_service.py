"""The scheduling service: keeps schedules and drives a timer backend."""

from __future__ import annotations

import enum
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from .node import Device, Node, WriteContext
from .params import Param, ParamValue, PropFlag, ReqSource, array_value
from .schedule_model import (
    MAX_ID_LEN,
    MAX_INFO_LEN,
    MAX_NAME_LEN,
    MAX_OPERATION_LEN,
    Schedule,
    ScheduleOperation,
    Trigger,
    TriggerType,
    is_expired,
    operation_from_str,
)

log = logging.getLogger(__name__)

SCHEDULE_SERVICE_NAME = "Schedule"
SCHEDULE_SERVICE_TYPE = "esp.service.schedule"
SCHEDULES_PARAM_NAME = "Schedules"
SCHEDULES_PARAM_TYPE = "esp.param.schedules"
DEFAULT_MAX_SCHEDULES = 10


class _TimeSyncState(enum.Enum):
    NOT_STARTED = 0
    STARTED = 1
    DONE = 2


@dataclass
class ScheduleConfig:
    """What a timer backend needs to run one schedule.

    ``name`` is the schedule id and is unique. ``index`` identifies the
    schedule when the backend calls back.
    """

    name: str
    index: int
    type: TriggerType = TriggerType.INVALID
    hours: int = 0
    minutes: int = 0
    repeat_days: int = 0
    day: int = 0
    repeat_months: int = 0
    year: int = 0
    repeat_every_year: bool = False
    relative_seconds: int = 0
    next_scheduled_time: int = 0
    trigger_cb: Callable[[Any], Any] | None = field(default=None, repr=False)
    timestamp_cb: Callable[[Any, int], Any] | None = field(default=None, repr=False)


class RecordingBackend:
    """A timer backend that records what it is asked to do instead of running timers."""

    def __init__(self) -> None:
        self.configs: dict[int, ScheduleConfig] = {}
        self.enabled: set[int] = set()
        self.calls: list[tuple[str, int]] = []
        self._handles = itertools.count(1)

    def _check(self, handle: int) -> None:
        if handle not in self.configs:
            raise KeyError(f"unknown schedule handle {handle}")

    def create(self, config: ScheduleConfig) -> int:
        handle = next(self._handles)
        self.configs[handle] = config
        self.calls.append(("create", handle))
        return handle

    def edit(self, handle: int, config: ScheduleConfig) -> None:
        self._check(handle)
        self.configs[handle] = config
        self.calls.append(("edit", handle))

    def enable(self, handle: int) -> None:
        self._check(handle)
        self.enabled.add(handle)
        self.calls.append(("enable", handle))

    def disable(self, handle: int) -> None:
        self._check(handle)
        self.enabled.discard(handle)
        self.calls.append(("disable", handle))

    def delete(self, handle: int) -> None:
        self._check(handle)
        del self.configs[handle]
        self.enabled.discard(handle)
        self.calls.append(("delete", handle))


def _string(entry: dict, key: str, limit: int) -> str | None:
    value = entry.get(key)
    if not isinstance(value, str):
        return None
    return value[:limit]


class ScheduleService:
    """Keeps the schedules of a node and applies requests that change them."""

    def __init__(
        self,
        node: Node,
        backend: Any,
        device: Device | None = None,
        max_schedules: int = DEFAULT_MAX_SCHEDULES,
    ) -> None:
        self.node = node
        self.backend = backend
        self.device = device
        self.max_schedules = max_schedules
        self.schedules: list[Schedule] = []
        self.time_sync_state = _TimeSyncState.NOT_STARTED
        self._next_index = 0

    def _now(self) -> float:
        return self.node._clock()

    def _time_synced(self) -> bool:
        return self.node._time_synced()

    def get(self, schedule_id: str | None) -> Schedule | None:
        """Return the schedule with the given id, or None."""
        if schedule_id is None:
            return None
        schedule_id = schedule_id[:MAX_ID_LEN]
        return next((s for s in self.schedules if s.id == schedule_id), None)

    def _by_index(self, index: int) -> Schedule | None:
        return next((s for s in self.schedules if s.index == index), None)

    # Backend configuration

    def _prepare_config(self, schedule: Schedule) -> ScheduleConfig:
        trigger = schedule.trigger
        index = schedule.index
        config = ScheduleConfig(
            name=schedule.id,
            index=index,
            trigger_cb=lambda _handle: self.on_trigger(index),
        )
        timestamp_cb = lambda _handle, ts: self.on_timestamp(index, ts)  # noqa: E731
        if trigger.type is TriggerType.RELATIVE:
            config.type = TriggerType.RELATIVE
            config.next_scheduled_time = trigger.next_timestamp
            config.relative_seconds = trigger.relative_seconds
            config.timestamp_cb = timestamp_cb
            return config
        config.hours, config.minutes = divmod(trigger.minutes, 60)
        if trigger.type is TriggerType.DAYS_OF_WEEK:
            config.type = TriggerType.DAYS_OF_WEEK
            config.repeat_days = trigger.repeat_days
            if trigger.repeat_days == 0:
                config.timestamp_cb = timestamp_cb
        elif trigger.type is TriggerType.DATE:
            config.type = TriggerType.DATE
            config.day = trigger.day
            config.repeat_months = trigger.repeat_months
            config.year = trigger.year
            config.repeat_every_year = trigger.repeat_every_year
            if trigger.repeat_months == 0:
                config.timestamp_cb = timestamp_cb
        return config

    # Operations

    def _operation_add(self, schedule: Schedule) -> bool:
        handle = self.backend.create(self._prepare_config(schedule))
        if handle is None:
            log.error("Failed to create schedule with id %s", schedule.id)
            return False
        schedule.handle = handle
        if self.get(schedule.id) is not None:
            log.info("Schedule with id %s already added to list.", schedule.id)
            return False
        self.schedules.append(schedule)
        return True

    def _operation_edit(self, schedule: Schedule) -> None:
        self.backend.edit(schedule.handle, self._prepare_config(schedule))
        if schedule.enabled:
            self._operation_disable(schedule)
            self._operation_enable(schedule)

    def _operation_remove(self, schedule: Schedule) -> None:
        self.schedules.remove(schedule)
        self.backend.delete(schedule.handle)

    def _operation_enable(self, schedule: Schedule) -> bool:
        # Marked enabled even before time sync so that the reported state is right.
        schedule.enabled = True
        if self.time_sync_state is _TimeSyncState.NOT_STARTED:
            if not self._time_synced():
                log.info(
                    "Time is not synchronised yet. The schedule will be enabled "
                    "when time is synchronised."
                )
                self.time_sync_state = _TimeSyncState.STARTED
                return False
            self.time_sync_state = _TimeSyncState.DONE
        elif self.time_sync_state is _TimeSyncState.STARTED:
            return False
        if is_expired(schedule, self._now()):
            log.info("Schedule with id %s does not repeat anymore. Disabling it.", schedule.id)
            self._operation_disable(schedule)
            self.report_params()
            return True
        self.backend.enable(schedule.handle)
        return True

    def _operation_disable(self, schedule: Schedule) -> None:
        self.backend.disable(schedule.handle)
        schedule.trigger.next_timestamp = 0
        schedule.enabled = False

    def _perform(self, schedule: Schedule, operation: ScheduleOperation, enabled: bool) -> None:
        if operation is ScheduleOperation.ADD:
            if len(self.schedules) < self.max_schedules:
                if self._operation_add(schedule) and enabled:
                    self._operation_enable(schedule)
            else:
                log.error(
                    "Max schedules (%d) reached. Not adding this schedule with id %s",
                    self.max_schedules,
                    schedule.id,
                )
        elif operation is ScheduleOperation.EDIT:
            self._operation_edit(schedule)
        elif operation is ScheduleOperation.REMOVE:
            self._operation_remove(schedule)
        elif operation is ScheduleOperation.ENABLE:
            self._operation_enable(schedule)
        elif operation is ScheduleOperation.DISABLE:
            self._operation_disable(schedule)

    # Parsing of a single entry

    def _parse_operation(self, entry: dict, schedule_id: str) -> ScheduleOperation:
        text = _string(entry, "operation", MAX_OPERATION_LEN)
        if not text:
            log.error("Operation not found in schedule with id: %s", schedule_id)
            return ScheduleOperation.INVALID
        operation = operation_from_str(text)
        if operation is ScheduleOperation.EDIT and self.get(schedule_id) is None:
            operation = ScheduleOperation.ADD
        elif operation is ScheduleOperation.INVALID:
            log.error("Invalid schedule operation found: %s", text)
        return operation

    def _find_or_create(
        self, entry: dict, schedule_id: str, operation: ScheduleOperation
    ) -> Schedule | None:
        if operation is ScheduleOperation.ADD:
            if self.get(schedule_id) is not None:
                log.error("Schedule with id %s already exists.", schedule_id)
                return None
            name = _string(entry, "name", MAX_NAME_LEN)
            if not name:
                log.error("Name not found for schedule with id: %s", schedule_id)
                return None
            schedule = Schedule(id=schedule_id, name=name, index=self._next_index)
            self._next_index += 1
            return schedule
        schedule = self.get(schedule_id)
        if schedule is None:
            log.error("Schedule with id %s not found", schedule_id)
            return None
        if operation is ScheduleOperation.EDIT:
            name = _string(entry, "name", MAX_NAME_LEN)
            if name:
                schedule.name = name
        return schedule

    @staticmethod
    def _parse_details(entry: dict, schedule: Schedule) -> None:
        action = entry.get("action")
        if isinstance(action, dict):
            schedule.action = json.dumps(action, separators=(",", ":"))
        triggers = entry.get("triggers")
        if isinstance(triggers, list) and triggers:
            schedule.trigger = Trigger.from_json(triggers[0])
        info = _string(entry, "info", MAX_INFO_LEN)
        if info is not None:
            schedule.info = info or None
        flags = entry.get("flags")
        if isinstance(flags, int) and not isinstance(flags, bool):
            schedule.flags = flags

    # Requests

    def apply(self, data: str | bytes, src: ReqSource) -> None:
        """Apply a schedules request.

        Raises ValueError if the request is not valid JSON.
        """
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        try:
            doc = json.loads(data)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ValueError("schedules request is not valid JSON") from exc
        if not isinstance(doc, list):
            return
        enabled = True
        for entry in doc:
            if not isinstance(entry, dict):
                break
            schedule_id = _string(entry, "id", MAX_ID_LEN)
            if not schedule_id:
                log.error("ID not found in schedule JSON")
                continue
            if src == ReqSource.INIT:
                operation = ScheduleOperation.ADD
            else:
                operation = self._parse_operation(entry, schedule_id)
                if operation is ScheduleOperation.INVALID:
                    continue
            schedule = self._find_or_create(entry, schedule_id, operation)
            if schedule is None:
                continue
            if operation in (ScheduleOperation.ADD, ScheduleOperation.EDIT):
                if operation is ScheduleOperation.ADD:
                    if src == ReqSource.INIT:
                        stored = entry.get("enabled")
                        if isinstance(stored, bool):
                            enabled = stored
                    else:
                        enabled = True
                self._parse_details(entry, schedule)
            self._perform(schedule, operation, enabled)

    def params_json(self) -> str:
        """Return the schedule list as compact JSON."""
        return json.dumps([s.to_json() for s in self.schedules], separators=(",", ":"))

    def report_params(self) -> None:
        """Store the schedule list in the schedules parameter and report it."""
        if self.device is None:
            raise ValueError("schedule service has no device")
        param = self.device.get_param_by_type(SCHEDULES_PARAM_TYPE)
        if param is None:
            raise ValueError("schedule service has no schedules param")
        self.node.param_update_and_report(param, array_value(self.params_json()))

    def handle_write(
        self, device: Device, param: Param, value: ParamValue, ctx: WriteContext
    ) -> None:
        """Handle a write to the schedules parameter."""
        if param.type != SCHEDULES_PARAM_TYPE:
            raise ValueError(
                f"got callback for invalid param with name {param.name} and type {param.type}"
            )
        if not value.value:
            raise ValueError("invalid length for schedules params")
        try:
            self.apply(value.value, ctx.src)
        except ValueError as exc:
            log.error("%s", exc)
            return
        if ctx.src != ReqSource.INIT:
            self.report_params()

    # Backend and timer callbacks

    def on_trigger(self, index: int) -> None:
        """Run the action of a schedule that fired; disable it if it will not fire again."""
        schedule = self._by_index(index)
        if schedule is None:
            log.error("Schedule with index %d not found for trigger callback", index)
            return
        try:
            self.node.handle_set_params(schedule.action, ReqSource.SCHEDULE)
        except ValueError as exc:
            log.error("Schedule %s action failed: %s", schedule.id, exc)
        if is_expired(schedule, self._now()):
            self._operation_disable(schedule)
            self.report_params()

    def on_timestamp(self, index: int, next_timestamp: int) -> None:
        """Record when a one-time schedule will next fire."""
        schedule = self._by_index(index)
        if schedule is None:
            log.error("Schedule with index %d not found for timestamp callback", index)
            return
        schedule.trigger.next_timestamp = next_timestamp

    def on_time_sync(self) -> bool:
        """Enable waiting schedules once time is known; return whether it is."""
        if not self._time_synced():
            return False
        self.time_sync_state = _TimeSyncState.DONE
        log.info("Time is synchronised now. Enabling the schedules.")
        for schedule in list(self.schedules):
            if schedule.enabled:
                self._operation_enable(schedule)
        return True


def enable_scheduling(
    node: Node, backend: Any, max_schedules: int = DEFAULT_MAX_SCHEDULES
) -> ScheduleService:
    """Add the schedule service to a node and return the object managing it."""
    service = ScheduleService(node, backend, None, max_schedules)

    def write_cb(device, param, value, _priv, ctx):
        service.handle_write(device, param, value, ctx)

    device = Device(
        SCHEDULE_SERVICE_NAME,
        type=SCHEDULE_SERVICE_TYPE,
        is_service=True,
        write_cb=write_cb,
    )
    param = Param(
        SCHEDULES_PARAM_NAME,
        SCHEDULES_PARAM_TYPE,
        array_value("[]"),
        PropFlag.READ | PropFlag.WRITE | PropFlag.PERSIST,
    )
    param.add_array_max_count(max_schedules)
    device.add_param(param)
    node.add_device(device)
    service.device = device
    log.debug("Scheduling Service Enabled")
    return service