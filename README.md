# nodeagent

`nodeagent` models a cloud-connected smart-home node as the device sees it. A node
holds devices and services. Each of those holds typed parameters. The package:

- builds the JSON documents the cloud expects: parameter reports, time-series
  records, alerts and the node configuration;
- applies parameter writes that arrive from the cloud;
- runs the system, time zone, scenes and scheduling services on top of that model.

It uses only the standard library.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Building a node

```python
from nodeagent.node import Device, Node, NodeInfo
from nodeagent.params import Param, PropFlag, ReqSource, bool_value, int_value

def publish(topic, payload):
    print(topic, payload)

node = Node("node-0001", NodeInfo(name="Hall", type="Lightbulb"), publish=publish)

light = Device("Light", type="esp.device.lightbulb")
power = Param("Power", "esp.param.power", bool_value(False),
              PropFlag.READ | PropFlag.WRITE)
brightness = Param("Brightness", "esp.param.brightness", int_value(50),
                   PropFlag.READ | PropFlag.WRITE | PropFlag.PERSIST)
brightness.add_bounds(int_value(0), int_value(100), int_value(1))

light.add_param(power)
light.add_param(brightness)
light.assign_primary(power)
node.add_device(light)
```

The `Node` constructor also accepts these keyword arguments:

- `store`: a `MemoryStore`. A new one is created if none is given.
- `subscribe(topic, callback)`: used to subscribe to remote writes.
- `clock()`: returns the current time as a number. It defaults to `time.time`.
- `time_synced()`: tells whether the clock can be trusted. It defaults to always true.

Every message the node publishes is also appended to `node.published` as a
`(topic, payload)` pair. Topics take the form `node/<node_id>/<suffix>`.

### Value types

Parameter values are frozen `ParamValue` objects, each holding a `ValueType` and a
value. You create them with these helpers:

- `bool_value`
- `int_value`
- `float_value`
- `str_value`
- `obj_value`
- `array_value`

Object and array values hold their JSON text. `ParamValue.to_json()` returns the value
as it appears in a report, with object and array text decoded. `source_to_str(src)`
returns a readable name for a `ReqSource`, or `None` if the source is unknown.

### Parameter details

A `Param` must have a name. It may not have the `TIME_SERIES` property if its value is
an object or an array. These methods refine a param:

- `Param.add_bounds(min, max, step)`: for integer and float params only. All three
  values must have the param's type.
- `Param.add_valid_strs(strs)`: for string params only.
- `Param.add_array_max_count(count)`: for array params only.
- `Param.add_ui_type(ui_type)`: sets a display hint.
- `Param.update(value)`: the new value must have the same type as the old one. The
  param is marked as changed. If it has `PropFlag.PERSIST` and belongs to a device
  that has a store, the value is saved as well.

Each of these raises `ValueError` on invalid input.

Saved values are kept in the store under the parent device's name:

- `Param.store_value()` writes the value.
- `Param.stored_value()` reads it back, and raises `KeyError` if nothing is saved.
- `MemoryStore` keeps the data in a dictionary.

`Device` also offers these methods:

- `get_param_by_name`
- `get_param_by_type`
- `add_attribute`

`Node` has its own `add_attribute`.

## Reporting

Values are published only once the node is running and its MQTT side is ready:

```python
node.start()              # later updates get reported
node.params_mqtt_init()   # subscribe to remote writes, then report the node state
node.param_update_and_report(power, bool_value(True))
```

The node provides these reporting methods:

- `Node.params_json(flags)` and `Node.node_params()` return the params document,
  e.g. `{"Light":{"Power":true,"Brightness":50}}`.
- `Node.param_update_and_report(param, value)` updates a value. It then publishes the
  changed params on `params/local`, and a time-series record if the param has
  `TIME_SERIES`.
- `Node.param_update_and_notify(param, value)` does the same. It also publishes the
  changed params on `alert`.
- `Node.report_time_series(param)` builds a time-series record and returns it. It
  publishes the record on `params/ts_data` once MQTT is ready. It raises
  `RuntimeError` while the time is not synchronised.
- `Node.report_node_state()` publishes every value on `params/local/init`.
- `Node.raise_alert(text)` publishes `{"esp.alert.str": text}`. The text is cut to
  100 characters.

For the node configuration document, `nodeagent.config` provides:

- `node_config(node)`, which returns the document as a dictionary;
- `node_config_json(node)`, which returns it as compact JSON;
- `report_node_config(node)`, which publishes it on `config`.

## Handling writes from the cloud

`Node.handle_set_params(data, src)` applies a JSON document such as
`{"Light": {"Power": true}}`. It raises `ValueError` if the document is not a JSON
object.

For each param whose value is present and of the right type, the device's write
callback is called as `write_cb(device, param, value, priv_data, ctx)`. Here `ctx` is
a `WriteContext` that carries the `ReqSource`. Exceptions raised by the callback are
logged. Params of type `esp.param.name` are instead updated and reported directly.

## Services

```python
from nodeagent.services import (
    SystemFlag, SystemServiceConfig, TimezoneSettings,
    enable_system_service, enable_timezone_service,
)
from nodeagent.scenes import enable_scenes
from nodeagent.schedule_service import RecordingBackend, enable_scheduling

enable_system_service(node, SystemServiceConfig(
    flags=SystemFlag.REBOOT | SystemFlag.FACTORY_RESET,
    reboot=lambda seconds: ...,
    factory_reset=lambda seconds, reboot_seconds: ...,
))
enable_timezone_service(node, TimezoneSettings(tz="UTC", tz_posix="UTC0"))
scenes = enable_scenes(node, 10, True)                  # max scenes, deactivate support
schedules = enable_scheduling(node, RecordingBackend(), 10)
```

### System service

The service gets one boolean param per flag that is set. Writing `true` calls the
matching action in the config. If that action was not given, it raises
`RuntimeError`. At least one flag must be set.

### Time zone

`TimezoneSettings.set_timezone(tz)` looks the region name up in the settings' `zones`
table. The table ships with a handful of common zones. An unknown name raises
`ValueError`. `set_timezone_posix` sets the POSIX string directly.

### Scenes

The scenes service accepts these operations: `add`, `edit`, `remove`, `activate` and
`deactivate`.

- `operation_from_str` matches prefixes: `"act"` means activate.
- An `edit` for an unknown id is treated as an `add`.
- Activating a scene applies its stored action through `Node.handle_set_params`.
- Deactivating does the same, but only when deactivate support is on.
- `ScenesService.apply` returns whether the scene list changed.
- `report_params()` stores the list in the `Scenes` param and reports it.

### Schedules

`nodeagent.schedule_model` defines `Schedule` and `Trigger`. A trigger is one of
three kinds: days of week, date, or relative seconds. `is_expired(schedule, now)`
tells whether a schedule will never fire again.

The scheduling service hands timers to a backend. A backend is any object with these
methods: `create(config)`, `edit`, `enable`, `disable` and `delete`.
`RecordingBackend` only records these calls.

- Schedules enabled before the time is synchronised stay marked as enabled. They are
  armed by `ScheduleService.on_time_sync()`.
- `ScheduleService.on_trigger(index)` runs a schedule's action. If the schedule has
  expired, it also disables the schedule.
- `ScheduleService.on_timestamp(index, ts)` records the next firing time of a
  one-time schedule.

## What this package does not do

- It has no MQTT client. You pass in `publish` and `subscribe` callables.
- It runs no timers. Real scheduling needs a backend that fires `ScheduleConfig`
  callbacks. `RecordingBackend` does not.
- Values are stored only in memory, through `MemoryStore`.
- It does no Wi-Fi provisioning and no user-to-node association.
- It has no command-line tool.