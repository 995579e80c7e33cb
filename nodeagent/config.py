"""Node configuration: the document describing a node, its devices and services."""

from __future__ import annotations

import json
import logging
from typing import Any

from .node import Device, Node
from .params import Bounds, Param, ParamValue, PropFlag, ValueType

log = logging.getLogger(__name__)

CONFIG_VERSION = "2020-03-20"
NODE_CONFIG_TOPIC = "config"

_PROPERTY_NAMES = (
    (PropFlag.READ, "read"),
    (PropFlag.WRITE, "write"),
    (PropFlag.TIME_SERIES, "time_series"),
)


def _info(node: Node) -> dict[str, Any]:
    info = node.info
    doc: dict[str, Any] = {
        "name": info.name,
        "fw_version": info.fw_version,
        "type": info.type,
    }
    if info.subtype:
        doc["subtype"] = info.subtype
    doc["model"] = info.model
    doc["project_name"] = info.project_name
    doc["platform"] = info.platform
    return doc


def _attributes(attributes: dict[str, str]) -> list[dict[str, str]]:
    return [{"name": name, "value": value} for name, value in attributes.items()]


def _reportable(value: ParamValue | None) -> bool:
    return value is not None and value.type is not ValueType.INVALID


def _bounds(bounds: Bounds) -> dict[str, Any]:
    doc: dict[str, Any] = {}
    if _reportable(bounds.min):
        doc["min"] = bounds.min.to_json()
    if _reportable(bounds.max):
        doc["max"] = bounds.max.to_json()
    if _reportable(bounds.step) and bounds.step.value:
        doc["step"] = bounds.step.to_json()
    return doc


def _param_config(param: Param) -> dict[str, Any]:
    doc: dict[str, Any] = {}
    if param.name:
        doc["name"] = param.name
    if param.type:
        doc["type"] = param.type
    doc["data_type"] = param.val_type.data_type
    doc["properties"] = [
        name for flag, name in _PROPERTY_NAMES if param.properties & flag
    ]
    if param.bounds is not None:
        doc["bounds"] = _bounds(param.bounds)
    if param.valid_strs is not None:
        doc["valid_strs"] = list(param.valid_strs)
    if param.ui_type:
        doc["ui_type"] = param.ui_type
    return doc


def _device_config(device: Device) -> dict[str, Any]:
    doc: dict[str, Any] = {"name": device.name}
    if device.type:
        doc["type"] = device.type
    if device.subtype:
        doc["subtype"] = device.subtype
    if device.model:
        doc["model"] = device.model
    if device.attributes:
        doc["attributes"] = _attributes(device.attributes)
    if device.primary is not None:
        doc["primary"] = device.primary.name
    if device.params:
        doc["params"] = [_param_config(p) for p in device.params]
    return doc


def node_config(node: Node) -> dict[str, Any]:
    """Return the configuration document of a node as a dictionary."""
    doc: dict[str, Any] = {
        "node_id": node.node_id,
        "config_version": CONFIG_VERSION,
        "info": _info(node),
    }
    if node.attributes:
        doc["attributes"] = _attributes(node.attributes)
    if node.devices:
        doc["devices"] = [_device_config(d) for d in node.devices if not d.is_service]
        doc["services"] = [_device_config(d) for d in node.devices if d.is_service]
    return doc


def node_config_json(node: Node) -> str:
    """Return the configuration document of a node as compact JSON."""
    return json.dumps(node_config(node), separators=(",", ":"))


def report_node_config(node: Node) -> str:
    """Publish the node configuration and return the payload sent."""
    payload = node_config_json(node)
    log.info("Reporting Node Configuration of length %d bytes.", len(payload))
    node._publish(node.topic(NODE_CONFIG_TOPIC), payload)
    return payload