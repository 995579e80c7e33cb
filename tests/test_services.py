import json

import pytest

from nodeagent.node import Node
from nodeagent.params import ReqSource
from nodeagent.services import (
    FACTORY_RESET_TYPE,
    REBOOT_TYPE,
    TZ_POSIX_TYPE,
    TZ_TYPE,
    WIFI_RESET_TYPE,
    SystemFlag,
    SystemServiceConfig,
    TimezoneSettings,
    enable_system_service,
    enable_timezone_service,
)


def test_system_service_requires_a_flag():
    with pytest.raises(ValueError):
        enable_system_service(Node("n"), SystemServiceConfig(flags=SystemFlag.NONE))


def test_system_service_params_follow_flags():
    node = Node("n")
    service = enable_system_service(node, SystemServiceConfig(flags=SystemFlag.REBOOT))
    assert [p.type for p in service.params] == [REBOOT_TYPE]
    assert service.is_service
    assert node.devices == [service]


def test_system_service_all_flags():
    service = enable_system_service(Node("n"), SystemServiceConfig(flags=SystemFlag.ALL))
    assert [p.type for p in service.params] == [
        REBOOT_TYPE,
        FACTORY_RESET_TYPE,
        WIFI_RESET_TYPE,
    ]
    assert all(p.value.value is False for p in service.params)


def test_reboot_write_calls_action_and_updates():
    calls = []
    config = SystemServiceConfig(
        flags=SystemFlag.REBOOT, reboot_seconds=7, reboot=calls.append
    )
    node = Node("n")
    service = enable_system_service(node, config)
    param = service.params[0]
    node.handle_set_params(json.dumps({service.name: {param.name: True}}), ReqSource.CLOUD)
    assert calls == [7]
    assert param.value.value is True


def test_false_write_skips_action_but_updates():
    calls = []
    config = SystemServiceConfig(
        flags=SystemFlag.REBOOT, reboot=calls.append
    )
    node = Node("n")
    service = enable_system_service(node, config)
    param = service.params[0]
    node.handle_set_params(json.dumps({service.name: {param.name: False}}), ReqSource.CLOUD)
    assert calls == []
    assert param.flags != 0


def test_factory_reset_receives_both_delays():
    calls = []
    config = SystemServiceConfig(
        flags=SystemFlag.FACTORY_RESET,
        reset_seconds=3,
        reset_reboot_seconds=4,
        factory_reset=lambda a, b: calls.append((a, b)),
    )
    node = Node("n")
    service = enable_system_service(node, config)
    param = service.params[0]
    node.handle_set_params(json.dumps({service.name: {param.name: True}}), ReqSource.LOCAL)
    assert calls == [(3, 4)]


def test_failed_action_leaves_value_unchanged():
    def broken(seconds):
        raise RuntimeError("cannot reboot")

    node = Node("n")
    service = enable_system_service(
        node, SystemServiceConfig(flags=SystemFlag.REBOOT, reboot=broken)
    )
    param = service.params[0]
    node.handle_set_params(json.dumps({service.name: {param.name: True}}), ReqSource.CLOUD)
    assert param.value.value is False


def test_update_is_reported_once_started():
    node = Node("n")
    service = enable_system_service(
        node, SystemServiceConfig(flags=SystemFlag.REBOOT, reboot=lambda s: None)
    )
    node.start()
    node.params_mqtt_init()
    node.published.clear()
    param = service.params[0]
    node.handle_set_params(json.dumps({service.name: {param.name: True}}), ReqSource.CLOUD)
    topics = [t for t, _ in node.published]
    assert node.topic("params/local") in topics


def test_timezone_settings_lookup():
    settings = TimezoneSettings()
    settings.set_timezone("Asia/Shanghai")
    assert settings.tz == "Asia/Shanghai"
    assert settings.tz_posix == settings.zones["Asia/Shanghai"]


def test_timezone_settings_unknown_zone():
    settings = TimezoneSettings()
    with pytest.raises(ValueError):
        settings.set_timezone("Nowhere/Land")
    assert settings.tz is None


def test_timezone_settings_posix():
    settings = TimezoneSettings()
    settings.set_timezone_posix("UTC0")
    assert settings.tz_posix == "UTC0"
    with pytest.raises(ValueError):
        settings.set_timezone_posix("")


def test_time_service_initial_values():
    settings = TimezoneSettings(tz="UTC", tz_posix="UTC0")
    service = enable_timezone_service(Node("n"), settings)
    tz = service.get_param_by_type(TZ_TYPE)
    posix = service.get_param_by_type(TZ_POSIX_TYPE)
    assert tz.value.value == "UTC"
    assert posix.value.value == "UTC0"


def test_time_service_tz_write_updates_posix():
    settings = TimezoneSettings()
    node = Node("n")
    service = enable_timezone_service(node, settings)
    tz = service.get_param_by_type(TZ_TYPE)
    posix = service.get_param_by_type(TZ_POSIX_TYPE)
    node.handle_set_params(
        json.dumps({service.name: {tz.name: "Asia/Kolkata"}}), ReqSource.CLOUD
    )
    assert tz.value.value == "Asia/Kolkata"
    assert posix.value.value == settings.zones["Asia/Kolkata"]
    assert node.store.get(service.name, tz.name) == "Asia/Kolkata"


def test_time_service_unknown_tz_ignored():
    settings = TimezoneSettings(tz="UTC", tz_posix="UTC0")
    node = Node("n")
    service = enable_timezone_service(node, settings)
    tz = service.get_param_by_type(TZ_TYPE)
    node.handle_set_params(json.dumps({service.name: {tz.name: "Bad/Zone"}}), ReqSource.CLOUD)
    assert tz.value.value == "UTC"
    assert settings.tz == "UTC"


def test_time_service_posix_write():
    settings = TimezoneSettings()
    node = Node("n")
    service = enable_timezone_service(node, settings)
    posix = service.get_param_by_type(TZ_POSIX_TYPE)
    node.handle_set_params(json.dumps({service.name: {posix.name: "CET-1"}}), ReqSource.CLOUD)
    assert settings.tz_posix == "CET-1"
    assert posix.value.value == "CET-1"