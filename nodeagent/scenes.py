"""Scenes: named sets of parameter values that can be activated together."""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Any

from .node import Device, Node, WriteContext
from .params import Param, ParamValue, PropFlag, ReqSource, array_value

log = logging.getLogger(__name__)

SCENES_SERVICE_NAME = "Scenes"
SCENES_SERVICE_TYPE = "esp.service.scenes"
SCENES_PARAM_NAME = "Scenes"
SCENES_PARAM_TYPE = "esp.param.scenes"
DEFAULT_MAX_SCENES = 10

MAX_ID_LEN = 8
MAX_NAME_LEN = 32
MAX_INFO_LEN = 100
MAX_OPERATION_LEN = 10


class SceneOperation(enum.IntEnum):
    """Operations a scenes request may ask for."""

    INVALID = 0
    ADD = 1
    EDIT = 2
    REMOVE = 3
    ACTIVATE = 4
    DEACTIVATE = 5


_OPERATION_NAMES = (
    ("add", SceneOperation.ADD),
    ("edit", SceneOperation.EDIT),
    ("remove", SceneOperation.REMOVE),
    ("activate", SceneOperation.ACTIVATE),
    ("deactivate", SceneOperation.DEACTIVATE),
)


def operation_from_str(operation: str | None) -> SceneOperation:
    """Return the first operation whose name starts with the given text."""
    if operation is None:
        return SceneOperation.INVALID
    for name, op in _OPERATION_NAMES:
        if name.startswith(operation):
            return op
    return SceneOperation.INVALID


@dataclass
class Scene:
    """A scene: its identity, extra information and the action it applies."""

    id: str
    name: str
    info: str | None = None
    flags: int = 0
    action: str | None = None

    def to_json(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"name": self.name, "id": self.id}
        if self.info is not None:
            doc["info"] = self.info
        if self.flags != 0:
            doc["flags"] = self.flags
        if self.action is not None:
            doc["action"] = json.loads(self.action)
        return doc


def _string(entry: dict, key: str, limit: int) -> str | None:
    value = entry.get(key)
    if not isinstance(value, str):
        return None
    return value[:limit]


class ScenesService:
    """Keeps the scenes of a node and applies requests that change them."""

    def __init__(
        self,
        node: Node,
        device: Device | None = None,
        max_scenes: int = DEFAULT_MAX_SCENES,
        deactivate_support: bool = False,
    ) -> None:
        self.node = node
        self.device = device
        self.max_scenes = max_scenes
        self.deactivate_support = deactivate_support
        self.scenes: list[Scene] = []

    def get(self, scene_id: str | None) -> Scene | None:
        """Return the scene with the given id, or None."""
        if scene_id is None:
            return None
        scene_id = scene_id[:MAX_ID_LEN]
        return next((s for s in self.scenes if s.id == scene_id), None)

    # Parsing of a single entry

    def _parse_operation(self, entry: dict, scene_id: str) -> SceneOperation:
        text = _string(entry, "operation", MAX_OPERATION_LEN)
        if not text:
            log.error("Operation not found in scene with id: %s", scene_id)
            return SceneOperation.INVALID
        operation = operation_from_str(text)
        if operation is SceneOperation.EDIT and self.get(scene_id) is None:
            operation = SceneOperation.ADD
        elif operation is SceneOperation.INVALID:
            log.error("Invalid scene operation found: %s", text)
        return operation

    def _find_or_create(
        self, entry: dict, scene_id: str, operation: SceneOperation
    ) -> Scene | None:
        if operation is SceneOperation.ADD:
            if self.get(scene_id) is not None:
                log.error("Scene with id %s already exists. Not adding it again.", scene_id)
                return None
            name = _string(entry, "name", MAX_NAME_LEN)
            if not name:
                log.error("Name not found for scene with id: %s", scene_id)
                return None
            return Scene(id=scene_id, name=name)
        scene = self.get(scene_id)
        if scene is None:
            log.error("Scene with id %s not found", scene_id)
            return None
        if operation is SceneOperation.EDIT:
            name = _string(entry, "name", MAX_NAME_LEN)
            if name:
                scene.name = name
        return scene

    @staticmethod
    def _parse_details(entry: dict, scene: Scene) -> None:
        info = _string(entry, "info", MAX_INFO_LEN)
        if info is not None:
            scene.info = info or None
        flags = entry.get("flags")
        if isinstance(flags, int) and not isinstance(flags, bool):
            scene.flags = flags
        action = entry.get("action")
        if isinstance(action, dict):
            scene.action = json.dumps(action, separators=(",", ":"))

    def _run_action(self, scene: Scene, src: ReqSource) -> None:
        try:
            self.node.handle_set_params(scene.action, src)
        except ValueError as exc:
            log.error("Scene %s action failed: %s", scene.id, exc)

    def _perform(self, scene: Scene, operation: SceneOperation) -> None:
        if operation is SceneOperation.ADD:
            if len(self.scenes) < self.max_scenes:
                self.scenes.append(scene)
            else:
                log.error(
                    "Max scenes (%d) reached. Not adding this scene with id %s",
                    self.max_scenes,
                    scene.id,
                )
        elif operation is SceneOperation.REMOVE:
            self.scenes.remove(scene)
        elif operation is SceneOperation.ACTIVATE:
            self._run_action(scene, ReqSource.SCENE_ACTIVATE)
        elif operation is SceneOperation.DEACTIVATE:
            if self.deactivate_support:
                self._run_action(scene, ReqSource.SCENE_DEACTIVATE)
            else:
                log.warning("Deactivate operation not supported.")

    # Requests

    def apply(self, data: str | bytes, src: ReqSource) -> bool:
        """Apply a scenes request; return True if the scene list should be reported.

        Raises ValueError if the request is not valid JSON.
        """
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        try:
            doc = json.loads(data)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ValueError("scenes request is not valid JSON") from exc
        report = False
        if not isinstance(doc, list):
            return report
        for entry in doc:
            if not isinstance(entry, dict):
                break
            scene_id = _string(entry, "id", MAX_ID_LEN)
            if not scene_id:
                log.error("ID not found in scene JSON")
                continue
            if src == ReqSource.INIT:
                operation = SceneOperation.ADD
            else:
                operation = self._parse_operation(entry, scene_id)
                if operation is SceneOperation.INVALID:
                    continue
            scene = self._find_or_create(entry, scene_id, operation)
            if scene is None:
                continue
            if operation in (SceneOperation.ADD, SceneOperation.EDIT):
                self._parse_details(entry, scene)
            report = operation in (
                SceneOperation.ADD,
                SceneOperation.EDIT,
                SceneOperation.REMOVE,
            )
            self._perform(scene, operation)
        return report

    def params_json(self) -> str:
        """Return the scene list as compact JSON."""
        return json.dumps([s.to_json() for s in self.scenes], separators=(",", ":"))

    def report_params(self) -> None:
        """Store the scene list in the scenes parameter and report it."""
        if self.device is None:
            raise ValueError("scenes service has no device")
        param = self.device.get_param_by_type(SCENES_PARAM_TYPE)
        if param is None:
            raise ValueError("scenes service has no scenes param")
        self.node.param_update_and_report(param, array_value(self.params_json()))

    def handle_write(
        self, device: Device, param: Param, value: ParamValue, ctx: WriteContext
    ) -> None:
        """Handle a write to the scenes parameter."""
        if param.type != SCENES_PARAM_TYPE:
            raise ValueError(
                f"got callback for invalid param with name {param.name} and type {param.type}"
            )
        if not value.value:
            raise ValueError("invalid length for scenes params")
        try:
            report = self.apply(value.value, ctx.src)
        except ValueError as exc:
            log.error("%s", exc)
            return
        if ctx.src != ReqSource.INIT and report:
            self.report_params()


def enable_scenes(
    node: Node,
    max_scenes: int = DEFAULT_MAX_SCENES,
    deactivate_support: bool = False,
) -> ScenesService:
    """Add the scenes service to a node and return the object managing it."""
    service = ScenesService(node, None, max_scenes, deactivate_support)

    def write_cb(device, param, value, _priv, ctx):
        service.handle_write(device, param, value, ctx)

    device = Device(
        SCENES_SERVICE_NAME,
        type=SCENES_SERVICE_TYPE,
        is_service=True,
        write_cb=write_cb,
    )
    param = Param(
        SCENES_PARAM_NAME,
        SCENES_PARAM_TYPE,
        array_value("[]"),
        PropFlag.READ | PropFlag.WRITE | PropFlag.PERSIST,
    )
    param.add_array_max_count(max_scenes)
    device.add_param(param)
    node.add_device(device)
    service.device = device
    log.debug("Scenes Service Enabled")
    return service