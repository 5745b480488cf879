from __future__ import annotations

from dataclasses import dataclass, field

from .models import (
    DEFAULT_DIAGRAM_TYPE,
    ROOT_TYPE,
    Dimension,
    EdgeTypeHint,
    ModelRoot,
    ShapeTypeHint,
    TypeHint,
)


@dataclass(frozen=True)
class LayerSpec:
    layer_id: str
    label: str
    element_type_ids: frozenset[str]
    active_by_default: bool = True


@dataclass(frozen=True)
class DiagramConfiguration:
    diagram_type: str
    shape_hints: tuple[ShapeTypeHint, ...]
    edge_hints: tuple[EdgeTypeHint, ...]
    layers: tuple[LayerSpec, ...]
    type_labels: dict[str, str] = field(default_factory=dict)
    default_sizes: dict[str, Dimension] = field(default_factory=dict)
    label_type: str = "label"
    labelled_types: frozenset[str] = frozenset()
    needs_client_layout: bool = True
    animated_update: bool = True

    def type_hints(self) -> dict[str, TypeHint]:
        hints: dict[str, TypeHint] = {}
        for hint in (*self.shape_hints, *self.edge_hints):
            hints[hint.element_type_id] = hint.model_copy(deep=True)
        return hints

    def layer(self, layer_id: str) -> LayerSpec | None:
        for layer in self.layers:
            if layer.layer_id == layer_id:
                return layer
        return None

    def layer_for_type(self, element_type_id: str) -> LayerSpec | None:
        for layer in self.layers:
            if element_type_id in layer.element_type_ids:
                return layer
        return None

    def default_active_layers(self) -> set[str]:
        return {layer.layer_id for layer in self.layers if layer.active_by_default}

    def hidden_types(self, active_layers: set[str]) -> frozenset[str]:
        hidden: set[str] = set()
        for layer in self.layers:
            if layer.layer_id not in active_layers:
                hidden.update(layer.element_type_ids)
        return frozenset(hidden)

    def label_for(self, element_type_id: str) -> str:
        return self.type_labels.get(element_type_id, element_type_id.replace("-", " ").title())

    def default_size(self, element_type_id: str) -> Dimension:
        return self.default_sizes.get(element_type_id, Dimension(width=100.0, height=50.0)).model_copy()

    def build_empty_model(self) -> ModelRoot:
        return ModelRoot(type=ROOT_TYPE, id="root", children=[])


_NODE_TYPES = ["task", "decision"]

WORKFLOW_DIAGRAM = DiagramConfiguration(
    diagram_type=DEFAULT_DIAGRAM_TYPE,
    shape_hints=(
        ShapeTypeHint(element_type_id="start", deletable=False, resizable=False),
        ShapeTypeHint(element_type_id="task"),
        ShapeTypeHint(element_type_id="decision", resizable=False),
        ShapeTypeHint(element_type_id="lane", reparentable=False, containable_element_type_ids=_NODE_TYPES),
        ShapeTypeHint(element_type_id="comment", reparentable=False),
    ),
    edge_hints=(
        EdgeTypeHint(
            element_type_id="edge",
            source_element_type_ids=["start", *_NODE_TYPES],
            target_element_type_ids=_NODE_TYPES,
        ),
        EdgeTypeHint(
            element_type_id="comment-link",
            routable=False,
            source_element_type_ids=["comment"],
            target_element_type_ids=None,
        ),
    ),
    layers=(
        LayerSpec(
            layer_id="workflow",
            label="Workflow",
            element_type_ids=frozenset({"start", "task", "decision", "lane", "edge"}),
        ),
        LayerSpec(
            layer_id="annotations",
            label="Annotations",
            element_type_ids=frozenset({"comment", "comment-link"}),
            active_by_default=False,
        ),
    ),
    type_labels={
        "start": "Start Event",
        "task": "Task",
        "decision": "Decision",
        "lane": "Lane",
        "comment": "Comment",
        "edge": "Flow",
        "comment-link": "Comment Link",
    },
    default_sizes={
        "start": Dimension(width=30.0, height=30.0),
        "task": Dimension(width=120.0, height=60.0),
        "decision": Dimension(width=40.0, height=40.0),
        "lane": Dimension(width=400.0, height=200.0),
        "comment": Dimension(width=150.0, height=80.0),
        "label": Dimension(width=80.0, height=20.0),
    },
    labelled_types=frozenset({"task", "lane", "comment"}),
)

DIAGRAM_CONFIGURATIONS: dict[str, DiagramConfiguration] = {
    WORKFLOW_DIAGRAM.diagram_type: WORKFLOW_DIAGRAM,
}


def diagram_types() -> list[str]:
    return sorted(DIAGRAM_CONFIGURATIONS.keys())
