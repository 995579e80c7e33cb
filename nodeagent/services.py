"""Standard system and time services added to a node."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from .node import Device, Node, WriteContext
from .params import Param, ParamValue, PropFlag, bool_value, str_value

log = logging.getLogger(__name__)

SYSTEM_SERVICE_NAME = "System"
SYSTEM_SERVICE_TYPE = "esp.service.system"
REBOOT_TYPE = "esp.param.reboot"
FACTORY_RESET_TYPE = "esp.param.factory-reset"
WIFI_RESET_TYPE = "esp.param.wifi-reset"
REBOOT_NAME = "Reboot"
FACTORY_RESET_NAME = "Factory-Reset"
WIFI_RESET_NAME = "Wi-Fi-Reset"

TIME_SERVICE_NAME = "Time"
TIME_SERVICE_TYPE = "esp.service.time"
TZ_TYPE = "esp.param.tz"
TZ_POSIX_TYPE = "esp.param.tz_posix"
TZ_NAME = "TZ"
TZ_POSIX_NAME = "TZ-POSIX"


class SystemFlag(enum.IntFlag):
    """Which system actions the system service offers."""

    NONE = 0
    REBOOT = 1 << 0
    FACTORY_RESET = 1 << 1
    WIFI_RESET = 1 << 2
    ALL = REBOOT | FACTORY_RESET | WIFI_RESET


@dataclass
class SystemServiceConfig:
    """Flags, delays and the actions the system service triggers."""

    flags: SystemFlag = SystemFlag.NONE
    reboot_seconds: int = 2
    reset_seconds: int = 2
    reset_reboot_seconds: int = 2
    reboot: Callable[[int], Any] | None = field(default=None, repr=False)
    factory_reset: Callable[[int, int], Any] | None = field(default=None, repr=False)
    wifi_reset: Callable[[int, int], Any] | None = field(default=None, repr=False)


def _require(action: Callable | None, what: str) -> Callable:
    if action is None:
        raise RuntimeError(f"no {what} action configured")
    return action


def _system_write_cb(node: Node):
    def write_cb(
        device: Device, param: Param, value: ParamValue, config: Any, ctx: WriteContext
    ) -> None:
        if param.type == REBOOT_TYPE:
            if value.value is True:
                _require(config.reboot, "reboot")(config.reboot_seconds)
        elif param.type == FACTORY_RESET_TYPE:
            if value.value is True:
                _require(config.factory_reset, "factory reset")(
                    config.reset_seconds, config.reset_reboot_seconds
                )
        elif param.type == WIFI_RESET_TYPE:
            if value.value is True:
                _require(config.wifi_reset, "Wi-Fi reset")(
                    config.reset_seconds, config.reset_reboot_seconds
                )
        else:
            raise ValueError(f"unexpected param type {param.type}")
        node.param_update_and_report(param, value)

    return write_cb


def _action_param(name: str, type_: str) -> Param:
    return Param(name, type_, bool_value(False), PropFlag.READ | PropFlag.WRITE)


def enable_system_service(node: Node, config: SystemServiceConfig) -> Device:
    """Add the system service with a parameter for each flag set."""
    flags = SystemFlag(config.flags)
    if not flags & SystemFlag.ALL:
        raise ValueError("at least one flag should be set for system service")
    service = Device(
        SYSTEM_SERVICE_NAME,
        type=SYSTEM_SERVICE_TYPE,
        is_service=True,
        write_cb=_system_write_cb(node),
        priv_data=config,
    )
    if flags & SystemFlag.REBOOT:
        service.add_param(_action_param(REBOOT_NAME, REBOOT_TYPE))
    if flags & SystemFlag.FACTORY_RESET:
        service.add_param(_action_param(FACTORY_RESET_NAME, FACTORY_RESET_TYPE))
    if flags & SystemFlag.WIFI_RESET:
        service.add_param(_action_param(WIFI_RESET_NAME, WIFI_RESET_TYPE))
    node.add_device(service)
    log.info("System service enabled.")
    return service


_DEFAULT_ZONES = {
    "UTC": "UTC0",
    "Asia/Kolkata": "IST-5:30",
    "Asia/Shanghai": "CST-8",
    "Europe/London": "GMT0BST,M3.5.0/1,M10.5.0",
    "America/Los_Angeles": "PST8PDT,M3.2.0,M11.1.0",
    "America/New_York": "EST5EDT,M3.2.0,M11.1.0",
}


@dataclass
class TimezoneSettings:
    """The node's time zone, by region name and as a POSIX TZ string."""

    tz: str | None = None
    tz_posix: str | None = None
    zones: dict[str, str] = field(default_factory=lambda: dict(_DEFAULT_ZONES))

    def set_timezone(self, tz: str) -> None:
        """Set the zone by region name; raise ValueError if it is unknown."""
        if not tz:
            raise ValueError("time zone cannot be empty")
        try:
            posix = self.zones[tz]
        except KeyError:
            raise ValueError(f"unknown time zone {tz}") from None
        self.tz = tz
        self.tz_posix = posix

    def set_timezone_posix(self, tz_posix: str) -> None:
        """Set the zone directly as a POSIX TZ string."""
        if not tz_posix:
            raise ValueError("POSIX time zone cannot be empty")
        self.tz_posix = tz_posix


def _time_write_cb(node: Node):
    def write_cb(
        device: Device,
        param: Param,
        value: ParamValue,
        settings: Any,
        ctx: WriteContext,
    ) -> None:
        if param.type == TZ_TYPE:
            log.info("Received value = %s for %s - %s", value.value, device.name, param.name)
            settings.set_timezone(value.value)
            posix_param = device.get_param_by_type(TZ_POSIX_TYPE)
            if settings.tz_posix and posix_param is not None:
                node.param_update_and_report(posix_param, str_value(settings.tz_posix))
        elif param.type == TZ_POSIX_TYPE:
            log.info("Received value = %s for %s - %s", value.value, device.name, param.name)
            settings.set_timezone_posix(value.value)
        else:
            raise ValueError(f"unexpected param type {param.type}")
        node.param_update_and_report(param, value)

    return write_cb


def enable_timezone_service(node: Node, settings: TimezoneSettings) -> Device:
    """Add the time service, whose parameters hold the current time zone."""
    props = PropFlag.READ | PropFlag.WRITE | PropFlag.PERSIST
    service = Device(
        TIME_SERVICE_NAME,
        type=TIME_SERVICE_TYPE,
        is_service=True,
        write_cb=_time_write_cb(node),
        priv_data=settings,
    )
    service.add_param(Param(TZ_NAME, TZ_TYPE, str_value(settings.tz), props))
    service.add_param(
        Param(TZ_POSIX_NAME, TZ_POSIX_TYPE, str_value(settings.tz_posix), props)
    )
    node.add_device(service)
    log.info("Time service enabled")
    return service