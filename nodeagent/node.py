"""Devices, nodes and the reporting of parameter values over MQTT."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .params import (
    VALUE_CHANGE,
    VALUE_NOTIFY,
    MemoryStore,
    Param,
    ParamValue,
    PropFlag,
    ReqSource,
    ValueType,
)

log = logging.getLogger(__name__)

PARAMS_LOCAL_TOPIC = "params/local"
PARAMS_LOCAL_INIT_TOPIC = "params/local/init"
PARAMS_ALERT_TOPIC = "alert"
PARAMS_REMOTE_TOPIC = "params/remote"
TIME_SERIES_TOPIC = "params/ts_data"

TS_DATA_VERSION = "2021-09-13"
ALERT_KEY = "esp.alert.str"
MAX_ALERT_LEN = 100
NAME_PARAM_TYPE = "esp.param.name"

# "<device>.<param>" names of time series data are cut to this length.
_MAX_TS_NAME_LEN = 65
# Even the smallest report, such as {"d":{"p":0}}, is longer than this.
_MIN_REPORT_LEN = 10


def _dumps(doc: Any) -> str:
    return json.dumps(doc, separators=(",", ":"))


@dataclass
class NodeInfo:
    """Descriptive information about a node."""

    name: str
    type: str
    fw_version: str = "1.0"
    model: str = ""
    subtype: str | None = None
    project_name: str = ""
    platform: str = ""


@dataclass(frozen=True)
class WriteContext:
    """Context handed to a device's write callback."""

    src: ReqSource


WriteCallback = Callable[["Device", Param, ParamValue, Any, WriteContext], Any]


@dataclass(eq=False)
class Device:
    """A device or service: a named group of parameters."""

    name: str
    type: str | None = None
    subtype: str | None = None
    model: str | None = None
    is_service: bool = False
    write_cb: WriteCallback | None = field(default=None, repr=False)
    priv_data: Any = field(default=None, repr=False)
    params: list[Param] = field(default_factory=list)
    attributes: dict[str, str] = field(default_factory=dict)
    primary: Param | None = None
    store: MemoryStore | None = field(default=None, repr=False)

    def add_param(self, param: Param) -> Param:
        """Attach a parameter; names must be unique within the device."""
        if self.get_param_by_name(param.name) is not None:
            raise ValueError(f"param {param.name} already exists in {self.name}")
        param.parent = self
        param.store = self.store
        self.params.append(param)
        return param

    def get_param_by_type(self, type: str) -> Param | None:
        return next((p for p in self.params if p.type == type), None)

    def get_param_by_name(self, name: str) -> Param | None:
        return next((p for p in self.params if p.name == name), None)

    def add_attribute(self, name: str, value: str) -> None:
        if name in self.attributes:
            raise ValueError(f"attribute {name} already exists in {self.name}")
        self.attributes[name] = value

    def assign_primary(self, param: Param) -> None:
        if param not in self.params:
            raise ValueError(f"param {param.name} does not belong to {self.name}")
        self.primary = param


def _value_from_json(param: Param, obj: dict) -> ParamValue | None:
    """Read the new value of a parameter from a request, if present and well typed."""
    if param.name not in obj:
        return None
    raw = obj[param.name]
    kind = param.val_type
    is_number = isinstance(raw, (int, float)) and not isinstance(raw, bool)
    if kind is ValueType.BOOLEAN and isinstance(raw, bool):
        return ParamValue(kind, raw)
    if kind is ValueType.INTEGER and is_number:
        return ParamValue(kind, int(raw))
    if kind is ValueType.FLOAT and is_number:
        return ParamValue(kind, float(raw))
    if kind is ValueType.STRING and isinstance(raw, str):
        return ParamValue(kind, raw)
    if kind is ValueType.OBJECT and isinstance(raw, dict):
        return ParamValue(kind, _dumps(raw))
    if kind is ValueType.ARRAY and isinstance(raw, list):
        return ParamValue(kind, _dumps(raw))
    return None


class Node:
    """A node: its devices, parameter state and the messages it publishes."""

    def __init__(
        self,
        node_id: str,
        info: NodeInfo | None = None,
        *,
        store: MemoryStore | None = None,
        publish: Callable[[str, str], Any] | None = None,
        subscribe: Callable[[str, Callable[[str, Any], Any]], Any] | None = None,
        clock: Callable[[], float] = time.time,
        time_synced: Callable[[], bool] | None = None,
    ) -> None:
        self.node_id = node_id
        self.info = info if info is not None else NodeInfo(name=node_id, type="")
        self.store = store if store is not None else MemoryStore()
        self.devices: list[Device] = []
        self.attributes: dict[str, str] = {}
        self.published: list[tuple[str, str]] = []
        self.started = False
        self.mqtt_ready = False
        self._publish_cb = publish
        self._subscribe_cb = subscribe
        self._clock = clock
        self._time_synced = time_synced if time_synced is not None else (lambda: True)

    def add_device(self, device: Device) -> Device:
        if any(d.name == device.name for d in self.devices):
            raise ValueError(f"device {device.name} already exists")
        device.store = self.store
        for param in device.params:
            param.store = self.store
        self.devices.append(device)
        return device

    def add_attribute(self, name: str, value: str) -> None:
        if name in self.attributes:
            raise ValueError(f"attribute {name} already exists")
        self.attributes[name] = value

    def start(self) -> None:
        """Mark the node as running so that later updates get published."""
        self.started = True

    def topic(self, suffix: str) -> str:
        return f"node/{self.node_id}/{suffix}"

    def _all_params(self):
        for device in self.devices:
            yield from device.params

    def _publish(self, topic: str, payload: str) -> None:
        self.published.append((topic, payload))
        if self._publish_cb is not None:
            self._publish_cb(topic, payload)

    def _populate(self, flags: int, reset_flags: bool) -> str:
        doc: dict[str, dict[str, Any]] = {}
        for device in self.devices:
            values = {
                p.name: p.value.to_json()
                for p in device.params
                if not flags or p.flags & flags
            }
            if values:
                doc[device.name] = values
        if reset_flags:
            for param in self._all_params():
                param.flags &= ~flags
        return _dumps(doc)

    def params_json(self, flags: int = 0) -> str:
        """JSON of the parameters whose flags match, or of all when flags is 0."""
        return self._populate(flags, reset_flags=False)

    def node_params(self) -> str:
        return self.params_json(0)

    def handle_set_params(self, data: str | bytes, src: ReqSource) -> None:
        """Apply a request that sets parameter values, device by device."""
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        log.info("Received params: %s", data)
        try:
            doc = json.loads(data)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ValueError("params request is not valid JSON") from exc
        if not isinstance(doc, dict):
            raise ValueError("params request must be a JSON object")
        for device in self.devices:
            obj = doc.get(device.name)
            if isinstance(obj, dict):
                self._device_set_params(device, obj, ReqSource(src))

    def _device_set_params(self, device: Device, obj: dict, src: ReqSource) -> None:
        for param in device.params:
            new_val = _value_from_json(param, obj)
            if new_val is None:
                continue
            if param.type == NAME_PARAM_TYPE:
                self.param_update_and_report(param, new_val)
            elif device.write_cb is not None:
                try:
                    device.write_cb(
                        device, param, new_val, device.priv_data, WriteContext(src=src)
                    )
                except Exception:
                    log.exception(
                        "Remote update to param %s - %s failed", device.name, param.name
                    )

    def _report_internal(self, flags: int) -> None:
        payload = self._populate(flags, reset_flags=True)
        if len(payload) <= _MIN_REPORT_LEN:
            return
        if flags == VALUE_CHANGE:
            topic = self.topic(PARAMS_LOCAL_TOPIC)
        elif flags == VALUE_NOTIFY:
            topic = self.topic(PARAMS_ALERT_TOPIC)
        else:
            raise ValueError(f"unsupported report flags {flags}")
        if self.mqtt_ready:
            self._publish(topic, payload)
        else:
            log.warning("Not reporting params since params mqtt not initialized yet.")

    def param_report(self, param: Param) -> None:
        if param is None:
            raise ValueError("param cannot be None")
        self._report_internal(VALUE_CHANGE)

    def param_notify(self, param: Param) -> None:
        if param is None:
            raise ValueError("param cannot be None")
        param.flags |= VALUE_CHANGE | VALUE_NOTIFY
        try:
            self._report_internal(VALUE_NOTIFY)
        except ValueError:
            log.warning("Failed to report parameter")
        self._report_internal(VALUE_CHANGE)

    def _report_time_series_quietly(self, param: Param) -> None:
        if param.properties & PropFlag.TIME_SERIES:
            try:
                self.report_time_series(param)
            except (ValueError, RuntimeError) as exc:
                log.error("Time series report failed: %s", exc)

    def param_update_and_report(self, param: Param, value: ParamValue) -> None:
        param.update(value)
        if self.started:
            self._report_time_series_quietly(param)
            self.param_report(param)

    def param_update_and_notify(self, param: Param, value: ParamValue) -> None:
        param.update(value)
        if self.started:
            self._report_time_series_quietly(param)
            self.param_notify(param)

    def report_time_series(self, param: Param) -> str:
        """Build, and publish if possible, a time series record of the value."""
        if param is None:
            raise ValueError("param cannot be None")
        device = param.parent
        if device is None:
            raise ValueError(f'param "{param.name}" has not been added to any device')
        if not self._time_synced():
            raise RuntimeError("current time not yet available")
        name = f"{device.name}.{param.name}"[:_MAX_TS_NAME_LEN]
        payload = _dumps(
            {
                "ts_data_version": TS_DATA_VERSION,
                "ts_data": [
                    {
                        "name": name,
                        "dt": param.val_type.data_type,
                        "records": [
                            {"t": int(self._clock()), "v": param.value.to_json()}
                        ],
                    }
                ],
            }
        )
        if self.mqtt_ready:
            log.info("Reporting Time Series Data for %s", name)
            self._publish(self.topic(TIME_SERIES_TOPIC), payload)
        return payload

    def report_node_state(self) -> None:
        """Report all parameter values, then each time series parameter."""
        payload = self._populate(0, reset_flags=False)
        if len(payload) > _MIN_REPORT_LEN:
            if self.mqtt_ready:
                self._publish(self.topic(PARAMS_LOCAL_INIT_TOPIC), payload)
            else:
                log.warning("Not reporting params since params mqtt not initialized yet.")
        for param in self._all_params():
            self._report_time_series_quietly(param)

    def params_mqtt_init(self) -> None:
        """Subscribe for remote updates and report the current state."""
        if self._subscribe_cb is not None:
            self._subscribe_cb(
                self.topic(PARAMS_REMOTE_TOPIC),
                lambda _topic, payload: self.handle_set_params(payload, ReqSource.CLOUD),
            )
        self.mqtt_ready = True
        self.report_node_state()

    def raise_alert(self, alert: str) -> str:
        msg = alert[:MAX_ALERT_LEN]
        payload = _dumps({ALERT_KEY: msg})
        self._publish(self.topic(PARAMS_ALERT_TOPIC), payload)
        return payload