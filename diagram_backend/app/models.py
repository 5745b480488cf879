from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Severity = Literal["info", "warning", "error"]
OperationKind = Literal["createNode", "createConnection", "delete", "changeBounds", "changeContainer", "generic"]
ToolKind = Literal["node", "edge"]

DEFAULT_DIAGRAM_TYPE = "workflow-diagram"
DEFAULT_SOURCE_URI = "workflow.json"
ROOT_TYPE = "graph"


class WireModel(BaseModel):
    """Base for every record that crosses the wire with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Point(WireModel):
    x: float = 0.0
    y: float = 0.0


class Dimension(WireModel):
    width: float = 0.0
    height: float = 0.0


class Bounds(WireModel):
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


class ModelElement(WireModel):
    type: str
    id: str
    children: list[ModelElement] = Field(default_factory=list)
    position: Point | None = None
    size: Dimension | None = None
    alignment: Point | None = None
    source_id: str | None = None
    target_id: str | None = None
    routing_points: list[Point] = Field(default_factory=list)
    text: str | None = None
    args: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_edge(self) -> bool:
        return self.source_id is not None or self.target_id is not None


class ModelRoot(ModelElement):
    canvas_bounds: Bounds | None = None
    revision: int | None = None


class ShapeTypeHint(WireModel):
    hint_kind: Literal["shape"] = "shape"
    element_type_id: str
    repositionable: bool = True
    deletable: bool = True
    resizable: bool = True
    reparentable: bool = True
    containable_element_type_ids: list[str] | None = None


class EdgeTypeHint(WireModel):
    hint_kind: Literal["edge"] = "edge"
    element_type_id: str
    repositionable: bool = False
    deletable: bool = True
    routable: bool = True
    source_element_type_ids: list[str] | None = None
    target_element_type_ids: list[str] | None = None


TypeHint = Union[ShapeTypeHint, EdgeTypeHint]


class OperationDescriptor(WireModel):
    id: str
    element_type_id: str | None = None
    label: str
    operation_kind: OperationKind
    active: bool = True


class ToolDescriptor(WireModel):
    id: str
    label: str
    element_type_id: str
    tool_kind: ToolKind
    layer_id: str | None = None


class LayerDescriptor(WireModel):
    id: str
    label: str
    element_type_ids: list[str] = Field(default_factory=list)
    active: bool = True


class ElementAndBounds(WireModel):
    element_id: str
    new_position: Point | None = None
    new_size: Dimension


class ElementAndAlignment(WireModel):
    element_id: str
    new_alignment: Point


class ElementAndRoutingPoints(WireModel):
    element_id: str
    new_routing_points: list[Point] = Field(default_factory=list)


class Match(WireModel):
    left: ModelElement | None = None
    right: ModelElement | None = None
    left_parent_id: str | None = None
    right_parent_id: str | None = None
