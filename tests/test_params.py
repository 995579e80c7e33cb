from types import SimpleNamespace

import pytest

from nodeagent.params import (
    VALUE_CHANGE,
    Bounds,
    MemoryStore,
    Param,
    ParamValue,
    PropFlag,
    ReqSource,
    ValueType,
    array_value,
    bool_value,
    float_value,
    int_value,
    obj_value,
    source_to_str,
    str_value,
)


def _attached(param):
    param.parent = SimpleNamespace(name="Light")
    param.store = MemoryStore()
    return param


def test_factories_set_types():
    assert bool_value(1) == ParamValue(ValueType.BOOLEAN, True)
    assert int_value(7).type is ValueType.INTEGER
    assert float_value(2).value == 2.0
    assert str_value("on").value == "on"
    assert obj_value('{"a":1}').type is ValueType.OBJECT
    assert array_value("[1]").type is ValueType.ARRAY


def test_source_to_str():
    assert source_to_str(ReqSource.CLOUD) == "Cloud"
    assert source_to_str(ReqSource.SCENE_ACTIVATE) == "Scene Activate"
    assert source_to_str(42) is None


def test_data_type_names():
    assert Param("a", None, bool_value(True)).val_type.data_type == "bool"
    assert Param("b", None, array_value("[]")).val_type.data_type == "array"
    assert ParamValue(ValueType.INVALID).type.data_type == "invalid"


def test_to_json_decodes_object_and_array():
    assert obj_value('{"a": 1}').to_json() == {"a": 1}
    assert array_value("[1, 2]").to_json() == [1, 2]
    assert str_value("x").to_json() == "x"
    assert ParamValue(ValueType.INVALID).to_json() is None


def test_memory_store_missing_key():
    store = MemoryStore()
    store.set("ns", "k", 5)
    assert store.get("ns", "k") == 5
    with pytest.raises(KeyError):
        store.get("ns", "other")


def test_name_is_mandatory():
    with pytest.raises(ValueError):
        Param("", None, int_value(1))


def test_time_series_rejected_for_object():
    with pytest.raises(ValueError):
        Param("p", None, obj_value("{}"), PropFlag.TIME_SERIES)


def test_update_sets_change_flag():
    param = Param("Power", "esp.param.power", bool_value(False))
    param.update(bool_value(True))
    assert param.value.value is True
    assert param.flags & VALUE_CHANGE


def test_update_type_mismatch():
    param = Param("Power", None, bool_value(False))
    with pytest.raises(ValueError):
        param.update(int_value(1))
    assert param.flags == 0


def test_bounds_checks():
    param = Param("Brightness", None, int_value(50))
    param.add_bounds(int_value(0), int_value(100), int_value(1))
    assert param.bounds == Bounds(int_value(0), int_value(100), int_value(1))
    with pytest.raises(ValueError):
        param.add_bounds(int_value(0), float_value(1), int_value(1))
    with pytest.raises(ValueError):
        Param("Name", None, str_value("a")).add_bounds(
            str_value("a"), str_value("b"), str_value("c")
        )


def test_valid_strs_only_for_strings():
    param = Param("Mode", None, str_value("a"))
    param.add_valid_strs(["a", "b"])
    assert param.valid_strs == ("a", "b")
    with pytest.raises(ValueError):
        Param("Level", None, int_value(1)).add_valid_strs(["a"])


def test_array_max_count():
    param = Param("List", None, array_value("[]"))
    param.add_array_max_count(4)
    assert param.bounds.max == int_value(4)
    assert param.bounds.min is None
    with pytest.raises(ValueError):
        Param("Level", None, int_value(1)).add_array_max_count(4)


def test_ui_type():
    param = Param("Level", None, int_value(1))
    param.add_ui_type("esp.ui.slider")
    assert param.ui_type == "esp.ui.slider"
    with pytest.raises(ValueError):
        param.add_ui_type(None)


def test_store_round_trip_scalar():
    param = _attached(Param("Level", None, int_value(3)))
    param.store_value()
    assert param.stored_value() == int_value(3)


def test_store_round_trip_string():
    param = _attached(Param("Name", None, str_value("Lamp")))
    param.store_value()
    assert param.stored_value() == str_value("Lamp")


def test_persist_on_update():
    param = _attached(Param("Level", None, int_value(1), PropFlag.PERSIST))
    param.update(int_value(9))
    assert param.stored_value() == int_value(9)


def test_stored_value_missing_and_detached():
    param = _attached(Param("Level", None, int_value(1)))
    with pytest.raises(KeyError):
        param.stored_value()
    with pytest.raises(ValueError):
        Param("Other", None, int_value(1)).stored_value()


def test_update_without_parent_still_changes():
    param = Param("Level", None, int_value(1), PropFlag.PERSIST)
    param.update(int_value(2))
    assert param.value == int_value(2)