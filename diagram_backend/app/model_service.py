from __future__ import annotations

import logging
from collections import Counter
from typing import Iterator
from uuid import uuid4

from .actions import (
    ApplyLabelEditOperation,
    ChangeBoundsOperation,
    ChangeContainerOperation,
    ChangeRoutingPointsOperation,
    CreateEdgeOperation,
    CreateNodeOperation,
    DeleteElementOperation,
    ReconnectEdgeOperation,
)
from .diagram_config import DiagramConfiguration
from .errors import InvalidElementReference
from .models import (
    Bounds,
    ElementAndAlignment,
    ElementAndBounds,
    ElementAndRoutingPoints,
    ModelElement,
    ModelRoot,
    Point,
)

logger = logging.getLogger(__name__)

EditOperation = (
    CreateNodeOperation
    | CreateEdgeOperation
    | DeleteElementOperation
    | ChangeBoundsOperation
    | ChangeContainerOperation
    | ChangeRoutingPointsOperation
    | ReconnectEdgeOperation
    | ApplyLabelEditOperation
)


def iter_elements(element: ModelElement) -> Iterator[ModelElement]:
    yield element
    for child in element.children:
        yield from iter_elements(child)


class ModelIndex:
    """Lookup tables over one model tree: id -> element and id -> parent id."""

    def __init__(self, root: ModelRoot):
        self.root = root
        self.elements: dict[str, ModelElement] = {}
        self.parents: dict[str, str | None] = {root.id: None}
        self.duplicate_ids: list[str] = []
        counts: Counter[str] = Counter()
        self._walk(root, None, counts)
        self.duplicate_ids = sorted(element_id for element_id, count in counts.items() if count > 1)

    def _walk(self, element: ModelElement, parent_id: str | None, counts: Counter[str]) -> None:
        counts[element.id] += 1
        if element.id not in self.elements:
            self.elements[element.id] = element
            self.parents[element.id] = parent_id
        for child in element.children:
            self._walk(child, element.id, counts)

    def get(self, element_id: str) -> ModelElement | None:
        return self.elements.get(element_id)

    def contains(self, element_id: str) -> bool:
        return element_id in self.elements

    def parent_of(self, element_id: str) -> ModelElement | None:
        parent_id = self.parents.get(element_id)
        if parent_id is None:
            return None
        return self.elements.get(parent_id)

    def subtree_ids(self, element_id: str) -> set[str]:
        element = self.elements.get(element_id)
        if element is None:
            return set()
        return {descendant.id for descendant in iter_elements(element)}

    def edges(self) -> list[ModelElement]:
        return [element for element in self.elements.values() if element.is_edge]

    def dangling_edges(self) -> list[str]:
        return sorted(
            edge.id
            for edge in self.edges()
            if edge.source_id not in self.elements or edge.target_id not in self.elements
        )


def ensure_integrity(root: ModelRoot) -> None:
    index = ModelIndex(root)
    if index.duplicate_ids:
        raise InvalidElementReference(
            f"Model contains duplicate element ids: {', '.join(index.duplicate_ids)}",
            {"duplicateIds": index.duplicate_ids},
        )
    dangling = index.dangling_edges()
    if dangling:
        raise InvalidElementReference(
            f"Edges reference missing endpoints: {', '.join(dangling)}",
            {"danglingEdgeIds": dangling},
        )


def new_element_id(element_type_id: str) -> str:
    return f"{element_type_id}_{uuid4().hex[:8]}"


def stamp_revision(root: ModelRoot, revision: int) -> ModelRoot:
    stamped = root.model_copy(deep=True)
    stamped.revision = revision
    return stamped


def _prune_hidden(element: ModelElement, hidden_types: frozenset[str]) -> None:
    element.children = [child for child in element.children if child.type not in hidden_types]
    for child in element.children:
        _prune_hidden(child, hidden_types)


def _prune_dangling_edges(root: ModelRoot) -> None:
    index = ModelIndex(root)
    dangling = set(index.dangling_edges())
    if not dangling:
        return
    for element in iter_elements(root):
        element.children = [child for child in element.children if child.id not in dangling]


def visible_subset(root: ModelRoot, hidden_types: frozenset[str]) -> ModelRoot:
    visible = root.model_copy(deep=True)
    if not hidden_types:
        return visible
    _prune_hidden(visible, hidden_types)
    _prune_dangling_edges(visible)
    return visible


def _needs_size(element: ModelElement, root: ModelRoot) -> bool:
    return element.id != root.id and not element.is_edge


def layout_determined(root: ModelRoot) -> bool:
    """True when every sized element already carries its final size."""
    return all(element.size is not None for element in iter_elements(root) if _needs_size(element, root))


def apply_default_sizes(root: ModelRoot, config: DiagramConfiguration) -> ModelRoot:
    sized = root.model_copy(deep=True)
    for element in iter_elements(sized):
        if _needs_size(element, sized) and element.size is None:
            element.size = config.default_size(element.type)
        if _needs_size(element, sized) and element.position is None:
            element.position = Point()
    sized.canvas_bounds = compute_canvas_bounds(sized)
    return sized


def compute_canvas_bounds(root: ModelRoot) -> Bounds | None:
    boxes = [
        (element.position, element.size)
        for element in root.children
        if element.position is not None and element.size is not None
    ]
    if not boxes:
        return None
    min_x = min(position.x for position, _ in boxes)
    min_y = min(position.y for position, _ in boxes)
    max_x = max(position.x + size.width for position, size in boxes)
    max_y = max(position.y + size.height for position, size in boxes)
    return Bounds(x=min_x, y=min_y, width=max_x - min_x, height=max_y - min_y)


def merge_layout(
    root: ModelRoot,
    bounds: list[ElementAndBounds],
    alignments: list[ElementAndAlignment] | None = None,
    routes: list[ElementAndRoutingPoints] | None = None,
) -> ModelRoot:
    merged = root.model_copy(deep=True)
    index = ModelIndex(merged)

    for entry in bounds:
        element = index.get(entry.element_id)
        if element is None:
            logger.debug("Ignoring computed bounds for unknown element %s", entry.element_id)
            continue
        if entry.new_position is not None:
            element.position = entry.new_position.model_copy()
        element.size = entry.new_size.model_copy()

    for entry in alignments or []:
        element = index.get(entry.element_id)
        if element is not None:
            element.alignment = entry.new_alignment.model_copy()

    for entry in routes or []:
        element = index.get(entry.element_id)
        if element is not None and element.is_edge:
            element.routing_points = [point.model_copy() for point in entry.new_routing_points]

    merged.canvas_bounds = compute_canvas_bounds(merged)
    return merged


def _detach(index: ModelIndex, element_id: str) -> ModelElement | None:
    parent = index.parent_of(element_id)
    if parent is None:
        return None
    for position, child in enumerate(parent.children):
        if child.id == element_id:
            return parent.children.pop(position)
    return None


def _build_node(operation: CreateNodeOperation, config: DiagramConfiguration) -> ModelElement:
    element_id = new_element_id(operation.element_type_id)
    # Left unsized when the client measures; the bounds handshake fills it in.
    measured_here = not config.needs_client_layout
    node = ModelElement(
        type=operation.element_type_id,
        id=element_id,
        position=(operation.location or Point()).model_copy(),
        size=config.default_size(operation.element_type_id) if measured_here else None,
        args=dict(operation.args),
    )
    if operation.element_type_id in config.labelled_types:
        text = str(operation.args.get("name") or f"New {config.label_for(operation.element_type_id)}")
        node.children.append(
            ModelElement(
                type=config.label_type,
                id=f"{element_id}_label",
                text=text,
                position=Point(),
                size=config.default_size(config.label_type) if measured_here else None,
            )
        )
    return node


def _delete_cascade(root: ModelRoot, element_ids: list[str]) -> None:
    index = ModelIndex(root)
    doomed: set[str] = set()
    for element_id in element_ids:
        doomed |= index.subtree_ids(element_id)
    # Edges whose endpoint disappears go with it.
    for edge in index.edges():
        if edge.source_id in doomed or edge.target_id in doomed:
            doomed.add(edge.id)
    for element in iter_elements(root):
        element.children = [child for child in element.children if child.id not in doomed]


def apply_operation(root: ModelRoot, operation: EditOperation, config: DiagramConfiguration) -> ModelRoot:
    """Return a mutated copy of ``root``; references are expected to be validated already."""
    updated = root.model_copy(deep=True)
    index = ModelIndex(updated)

    if isinstance(operation, CreateNodeOperation):
        container = index.get(operation.container_id) if operation.container_id else updated
        if container is None:
            raise InvalidElementReference(f"Unknown container '{operation.container_id}'")
        container.children.append(_build_node(operation, config))

    elif isinstance(operation, CreateEdgeOperation):
        updated.children.append(
            ModelElement(
                type=operation.element_type_id,
                id=new_element_id(operation.element_type_id),
                source_id=operation.source_element_id,
                target_id=operation.target_element_id,
                args=dict(operation.args),
            )
        )

    elif isinstance(operation, DeleteElementOperation):
        _delete_cascade(updated, operation.element_ids)

    elif isinstance(operation, ChangeBoundsOperation):
        for entry in operation.new_bounds:
            element = index.get(entry.element_id)
            if element is None:
                raise InvalidElementReference(f"Unknown element '{entry.element_id}'")
            if entry.new_position is not None:
                element.position = entry.new_position.model_copy()
            element.size = entry.new_size.model_copy()

    elif isinstance(operation, ChangeContainerOperation):
        container = index.get(operation.target_container_id)
        element = _detach(index, operation.element_id)
        if container is None or element is None:
            raise InvalidElementReference(
                f"Cannot move '{operation.element_id}' into '{operation.target_container_id}'"
            )
        if operation.location is not None:
            element.position = operation.location.model_copy()
        container.children.append(element)

    elif isinstance(operation, ChangeRoutingPointsOperation):
        for entry in operation.new_routing_points:
            edge = index.get(entry.element_id)
            if edge is None or not edge.is_edge:
                raise InvalidElementReference(f"Unknown edge '{entry.element_id}'")
            edge.routing_points = [point.model_copy() for point in entry.new_routing_points]

    elif isinstance(operation, ReconnectEdgeOperation):
        edge = index.get(operation.edge_element_id)
        if edge is None or not edge.is_edge:
            raise InvalidElementReference(f"Unknown edge '{operation.edge_element_id}'")
        edge.source_id = operation.source_element_id
        edge.target_id = operation.target_element_id
        edge.routing_points = []

    elif isinstance(operation, ApplyLabelEditOperation):
        label = index.get(operation.label_id)
        if label is None:
            raise InvalidElementReference(f"Unknown label '{operation.label_id}'")
        label.text = operation.text
        if config.needs_client_layout:
            label.size = None

    updated.canvas_bounds = compute_canvas_bounds(updated)
    return updated
