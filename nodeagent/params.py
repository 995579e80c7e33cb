"""Parameter values, parameters and the persistent store they are saved to."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any

# Report flags kept on each parameter until its value has been published.
VALUE_CHANGE = 0x01
VALUE_NOTIFY = 0x02


class ValueType(enum.IntEnum):
    """Kinds of value a parameter may hold."""

    INVALID = 0
    BOOLEAN = 1
    INTEGER = 2
    FLOAT = 3
    STRING = 4
    OBJECT = 5
    ARRAY = 6

    @property
    def data_type(self) -> str:
        """Name of the type as reported in node configuration."""
        return _DATA_TYPE_NAMES.get(self, "invalid")

    @property
    def is_textual(self) -> bool:
        """True for types whose value is carried as a string."""
        return self in (ValueType.STRING, ValueType.OBJECT, ValueType.ARRAY)


_DATA_TYPE_NAMES = {
    ValueType.BOOLEAN: "bool",
    ValueType.INTEGER: "int",
    ValueType.FLOAT: "float",
    ValueType.STRING: "string",
    ValueType.OBJECT: "object",
    ValueType.ARRAY: "array",
}


class ReqSource(enum.IntEnum):
    """Where a request to write a parameter came from."""

    INIT = 0
    CLOUD = 1
    SCHEDULE = 2
    SCENE_ACTIVATE = 3
    SCENE_DEACTIVATE = 4
    LOCAL = 5


_SOURCE_NAMES = {
    ReqSource.INIT: "Init",
    ReqSource.CLOUD: "Cloud",
    ReqSource.SCHEDULE: "Schedule",
    ReqSource.SCENE_ACTIVATE: "Scene Activate",
    ReqSource.SCENE_DEACTIVATE: "Scene Deactivate",
    ReqSource.LOCAL: "Local",
}


def source_to_str(src: Any) -> str | None:
    """Return a readable name for a request source, or None if it is unknown."""
    try:
        return _SOURCE_NAMES[ReqSource(src)]
    except (ValueError, TypeError):
        return None


class PropFlag(enum.IntFlag):
    """Properties a parameter declares."""

    NONE = 0
    READ = 1 << 0
    WRITE = 1 << 1
    TIME_SERIES = 1 << 2
    PERSIST = 1 << 3


@dataclass(frozen=True)
class ParamValue:
    """A typed parameter value."""

    type: ValueType
    value: Any = None

    def to_json(self) -> Any:
        """Return the value as it appears in a JSON document.

        Objects and arrays hold their JSON text, which is decoded here.
        An invalid value has no JSON form and yields None.
        """
        if self.type in (ValueType.OBJECT, ValueType.ARRAY):
            return None if self.value is None else json.loads(self.value)
        if self.type is ValueType.INVALID:
            return None
        return self.value


def bool_value(val: Any) -> ParamValue:
    return ParamValue(ValueType.BOOLEAN, bool(val))


def int_value(val: Any) -> ParamValue:
    return ParamValue(ValueType.INTEGER, int(val))


def float_value(val: Any) -> ParamValue:
    return ParamValue(ValueType.FLOAT, float(val))


def _text(val: Any) -> str | None:
    return None if val is None else str(val)


def str_value(val: Any) -> ParamValue:
    return ParamValue(ValueType.STRING, _text(val))


def obj_value(val: Any) -> ParamValue:
    """Wrap the JSON text of an object."""
    return ParamValue(ValueType.OBJECT, _text(val))


def array_value(val: Any) -> ParamValue:
    """Wrap the JSON text of an array."""
    return ParamValue(ValueType.ARRAY, _text(val))


class MemoryStore:
    """Key-value store split into namespaces, standing in for flash storage."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    def get(self, namespace: str, key: str) -> Any:
        """Return a stored value; raise KeyError if there is none."""
        try:
            return self._data[namespace][key]
        except KeyError:
            raise KeyError(f"{namespace}/{key}") from None

    def set(self, namespace: str, key: str, value: Any) -> None:
        self._data.setdefault(namespace, {})[key] = value


@dataclass
class Bounds:
    """Limits of a numeric parameter, or the maximum length of an array."""

    min: ParamValue | None = None
    max: ParamValue | None = None
    step: ParamValue | None = None


@dataclass
class Param:
    """A named, typed parameter of a device."""

    name: str
    type: str | None
    value: ParamValue
    properties: PropFlag = PropFlag.NONE
    bounds: Bounds | None = None
    valid_strs: tuple[str, ...] | None = None
    ui_type: str | None = None
    flags: int = 0
    parent: Any = field(default=None, repr=False, compare=False)
    store: MemoryStore | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("param name is mandatory")
        self.properties = PropFlag(self.properties)
        if self.properties & PropFlag.TIME_SERIES and self.value.type in (
            ValueType.ARRAY,
            ValueType.OBJECT,
        ):
            raise ValueError("time series is not allowed for array/object params")

    @property
    def val_type(self) -> ValueType:
        return self.value.type

    def add_bounds(self, min: ParamValue, max: ParamValue, step: ParamValue) -> None:
        """Set minimum, maximum and step of an integer or float parameter."""
        if self.val_type not in (ValueType.INTEGER, ValueType.FLOAT):
            raise ValueError("only integer and float params can have bounds")
        if any(v.type != self.val_type for v in (min, max, step)):
            raise ValueError(
                f"cannot set bounds for {self.name} because of value type mismatch"
            )
        self.bounds = Bounds(min=min, max=max, step=step)

    def add_valid_strs(self, strs: Any) -> None:
        """Restrict a string parameter to the given values."""
        if self.val_type is not ValueType.STRING:
            raise ValueError("only string params can have valid strings")
        self.valid_strs = tuple(strs)

    def add_array_max_count(self, count: int) -> None:
        """Limit the number of elements of an array parameter."""
        if self.val_type is not ValueType.ARRAY:
            raise ValueError("only array params can have max count")
        self.bounds = Bounds(max=int_value(count))

    def add_ui_type(self, ui_type: str) -> None:
        if ui_type is None:
            raise ValueError("UI type cannot be None")
        self.ui_type = ui_type

    def update(self, value: ParamValue) -> None:
        """Replace the value, mark it changed and persist it if required."""
        if value.type != self.val_type:
            raise ValueError("new param value type not same as the existing one")
        if self.val_type is ValueType.INVALID:
            raise ValueError("param has an invalid value type")
        self.value = value
        self.flags |= VALUE_CHANGE
        if self.properties & PropFlag.PERSIST and self.parent is not None and self.store:
            self.store_value()

    def _namespace(self) -> str:
        if self.parent is None or self.store is None:
            raise ValueError(f"param {self.name} is not attached to a stored device")
        return self.parent.name

    def store_value(self) -> None:
        """Save the current value under the parent device's namespace."""
        namespace = self._namespace()
        if self.val_type.is_textual:
            if self.value.value is not None:
                self.store.set(namespace, self.name, self.value.value)
        else:
            self.store.set(namespace, self.name, self.value)

    def stored_value(self) -> ParamValue:
        """Return the saved value; raise KeyError if nothing is saved."""
        namespace = self._namespace()
        stored = self.store.get(namespace, self.name)
        if self.val_type.is_textual:
            return ParamValue(self.val_type, stored)
        return stored