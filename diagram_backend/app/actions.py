from __future__ import annotations

from typing import Annotated, Any, Literal, Union, get_args

from pydantic import Field, ValidationError

from .errors import MalformedAction, UnknownActionKind
from .models import (
    EdgeTypeHint,
    ElementAndAlignment,
    ElementAndBounds,
    ElementAndRoutingPoints,
    LayerDescriptor,
    Match,
    ModelRoot,
    OperationDescriptor,
    Point,
    Severity,
    ShapeTypeHint,
    ToolDescriptor,
    WireModel,
)


# Client -> server: capability handshake and queries

class RequestModelAction(WireModel):
    kind: Literal["requestModel"] = "requestModel"
    options: dict[str, Any] = Field(default_factory=dict)


class RequestToolsAction(WireModel):
    kind: Literal["requestTools"] = "requestTools"


class RequestLayersAction(WireModel):
    kind: Literal["requestLayers"] = "requestLayers"


class RequestTypeHintsAction(WireModel):
    kind: Literal["requestTypeHints"] = "requestTypeHints"


class RequestOperationsAction(WireModel):
    kind: Literal["requestOperations"] = "requestOperations"


class ComputedBoundsAction(WireModel):
    kind: Literal["computedBounds"] = "computedBounds"
    bounds: list[ElementAndBounds] = Field(default_factory=list)
    alignments: list[ElementAndAlignment] | None = None
    routes: list[ElementAndRoutingPoints] | None = None
    revision: int


class ToggleLayerAction(WireModel):
    kind: Literal["toggleLayer"] = "toggleLayer"
    layer_id: str
    active: bool | None = None


class SelectElementsAction(WireModel):
    kind: Literal["selectElements"] = "selectElements"
    selected_elements_ids: list[str] = Field(default_factory=list)
    deselected_elements_ids: list[str] = Field(default_factory=list)
    deselect_all: bool = False


class SaveModelAction(WireModel):
    kind: Literal["saveModel"] = "saveModel"
    file_uri: str | None = None


class RequestExportAction(WireModel):
    kind: Literal["requestExport"] = "requestExport"
    format: Literal["json"] = "json"


class RequestCheckEdgeAction(WireModel):
    kind: Literal["requestCheckEdge"] = "requestCheckEdge"
    edge_type: str
    source_element_id: str
    target_element_id: str


class DisposeClientSessionAction(WireModel):
    kind: Literal["disposeClientSession"] = "disposeClientSession"


# Client -> server: edit operations

class CreateNodeOperation(WireModel):
    kind: Literal["createNode"] = "createNode"
    element_type_id: str
    location: Point | None = None
    container_id: str | None = None
    args: dict[str, Any] = Field(default_factory=dict)


class CreateEdgeOperation(WireModel):
    kind: Literal["createEdge"] = "createEdge"
    element_type_id: str
    source_element_id: str
    target_element_id: str
    args: dict[str, Any] = Field(default_factory=dict)


class DeleteElementOperation(WireModel):
    kind: Literal["deleteElement"] = "deleteElement"
    element_ids: list[str] = Field(default_factory=list)


class ChangeBoundsOperation(WireModel):
    kind: Literal["changeBounds"] = "changeBounds"
    new_bounds: list[ElementAndBounds] = Field(default_factory=list)


class ChangeContainerOperation(WireModel):
    kind: Literal["changeContainer"] = "changeContainer"
    element_id: str
    target_container_id: str
    location: Point | None = None


class ChangeRoutingPointsOperation(WireModel):
    kind: Literal["changeRoutingPoints"] = "changeRoutingPoints"
    new_routing_points: list[ElementAndRoutingPoints] = Field(default_factory=list)


class ReconnectEdgeOperation(WireModel):
    kind: Literal["reconnectEdge"] = "reconnectEdge"
    edge_element_id: str
    source_element_id: str
    target_element_id: str


class ApplyLabelEditOperation(WireModel):
    kind: Literal["applyLabelEdit"] = "applyLabelEdit"
    label_id: str
    text: str


class UndoAction(WireModel):
    kind: Literal["undo"] = "undo"


class RedoAction(WireModel):
    kind: Literal["redo"] = "redo"


# Server -> client

class SetModelAction(WireModel):
    kind: Literal["setModel"] = "setModel"
    new_root: ModelRoot


class UpdateModelAction(WireModel):
    kind: Literal["updateModel"] = "updateModel"
    new_root: ModelRoot
    animate: bool = False
    matches: list[Match] | None = None


class RequestBoundsAction(WireModel):
    kind: Literal["requestBounds"] = "requestBounds"
    new_root: ModelRoot
    revision: int


class SetTypeHintsAction(WireModel):
    kind: Literal["setTypeHints"] = "setTypeHints"
    shape_hints: list[ShapeTypeHint] = Field(default_factory=list)
    edge_hints: list[EdgeTypeHint] = Field(default_factory=list)


class SetToolsAction(WireModel):
    kind: Literal["setTools"] = "setTools"
    tools: list[ToolDescriptor] = Field(default_factory=list)


class SetLayersAction(WireModel):
    kind: Literal["setLayers"] = "setLayers"
    layers: list[LayerDescriptor] = Field(default_factory=list)


class SetOperationsAction(WireModel):
    kind: Literal["setOperations"] = "setOperations"
    operations: list[OperationDescriptor] = Field(default_factory=list)


class ServerStatusAction(WireModel):
    kind: Literal["serverStatus"] = "serverStatus"
    severity: Severity
    message: str
    code: str | None = None
    details: dict[str, Any] | None = None


class SetDirtyStateAction(WireModel):
    kind: Literal["setDirtyState"] = "setDirtyState"
    is_dirty: bool
    reason: str | None = None


class ExportResultAction(WireModel):
    kind: Literal["exportResult"] = "exportResult"
    format: Literal["json"] = "json"
    content: dict[str, Any] = Field(default_factory=dict)


class CheckEdgeResultAction(WireModel):
    kind: Literal["checkEdgeResult"] = "checkEdgeResult"
    is_valid: bool
    edge_type: str
    source_element_id: str
    target_element_id: str
    reason: str | None = None


# Request/response correlation wrappers, usable in both directions

class IdentifiableRequestAction(WireModel):
    kind: Literal["identifiableRequestAction"] = "identifiableRequestAction"
    id: str
    action: Action


class IdentifiableResponseAction(WireModel):
    kind: Literal["identifiableResponseAction"] = "identifiableResponseAction"
    id: str
    action: Action


AnyAction = Union[
    RequestModelAction,
    RequestToolsAction,
    RequestLayersAction,
    RequestTypeHintsAction,
    RequestOperationsAction,
    ComputedBoundsAction,
    ToggleLayerAction,
    SelectElementsAction,
    SaveModelAction,
    RequestExportAction,
    RequestCheckEdgeAction,
    DisposeClientSessionAction,
    CreateNodeOperation,
    CreateEdgeOperation,
    DeleteElementOperation,
    ChangeBoundsOperation,
    ChangeContainerOperation,
    ChangeRoutingPointsOperation,
    ReconnectEdgeOperation,
    ApplyLabelEditOperation,
    UndoAction,
    RedoAction,
    SetModelAction,
    UpdateModelAction,
    RequestBoundsAction,
    SetTypeHintsAction,
    SetToolsAction,
    SetLayersAction,
    SetOperationsAction,
    ServerStatusAction,
    SetDirtyStateAction,
    ExportResultAction,
    CheckEdgeResultAction,
    IdentifiableRequestAction,
    IdentifiableResponseAction,
]
Action = Annotated[AnyAction, Field(discriminator="kind")]

IdentifiableRequestAction.model_rebuild()
IdentifiableResponseAction.model_rebuild()


ACTION_KINDS: frozenset[str] = frozenset(variant.model_fields["kind"].default for variant in get_args(AnyAction))

CAPABILITY_REQUEST_KINDS = frozenset({"requestModel", "requestTools", "requestLayers"})
EDIT_KINDS = frozenset(
    {
        "createNode",
        "createEdge",
        "deleteElement",
        "changeBounds",
        "changeContainer",
        "changeRoutingPoints",
        "reconnectEdge",
        "applyLabelEdit",
        "undo",
        "redo",
    }
)
MODEL_LIFECYCLE_KINDS = frozenset(
    {
        "requestModel",
        "requestTypeHints",
        "selectElements",
        "saveModel",
        "requestExport",
        "requestCheckEdge",
        "disposeClientSession",
        "identifiableRequestAction",
        "identifiableResponseAction",
    }
)
BOUNDS_KINDS = frozenset({"computedBounds"})
CAPABILITY_KINDS = frozenset({"requestTools", "requestLayers", "requestOperations", "toggleLayer"})


class ActionEnvelope(WireModel):
    client_id: str
    action: Action


def encode_envelope(envelope: ActionEnvelope) -> dict[str, Any]:
    return envelope.to_wire()


def _check_kind(raw_action: Any, path: str) -> None:
    if not isinstance(raw_action, dict):
        raise MalformedAction(f"{path} must be an object", {"path": path})
    kind = raw_action.get("kind")
    if not isinstance(kind, str):
        raise MalformedAction(f"{path}.kind must be a string", {"path": f"{path}.kind"})
    if kind not in ACTION_KINDS:
        raise UnknownActionKind(kind)
    if kind in {"identifiableRequestAction", "identifiableResponseAction"}:
        _check_kind(raw_action.get("action"), f"{path}.action")


def decode_envelope(raw: Any) -> ActionEnvelope:
    """Decode a wire envelope, mapping schema problems onto the error taxonomy."""
    if not isinstance(raw, dict):
        raise MalformedAction("envelope must be an object")
    _check_kind(raw.get("action"), "action")
    try:
        return ActionEnvelope.model_validate(raw)
    except ValidationError as error:
        raise MalformedAction(
            "envelope failed schema validation",
            {"errors": error.errors(include_url=False, include_context=False, include_input=False)},
        ) from error


def status_envelope(client_id: str, severity: Severity, message: str, **extra: Any) -> ActionEnvelope:
    return ActionEnvelope(
        client_id=client_id,
        action=ServerStatusAction(severity=severity, message=message, **extra),
    )
