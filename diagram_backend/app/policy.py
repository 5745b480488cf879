from __future__ import annotations

from dataclasses import dataclass, field

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
from .model_service import EditOperation, ModelIndex
from .models import EdgeTypeHint, ModelElement, ShapeTypeHint, TypeHint


@dataclass
class PolicyResult:
    errors: list[str] = field(default_factory=list)
    invalid_references: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and not self.invalid_references


def _allows_type(allowed: list[str] | None, element_type_id: str) -> bool:
    return allowed is None or element_type_id in allowed


class TypeHintPolicy:
    """Single combined gate per operation kind over the session's current type hints.

    ``index`` must be built over the model subset the client can see, so hidden
    elements count as missing references.
    """

    @staticmethod
    def validate_operation(
        operation: EditOperation,
        index: ModelIndex,
        hints: dict[str, TypeHint],
        config: DiagramConfiguration,
        hidden_types: frozenset[str] = frozenset(),
    ) -> PolicyResult:
        result = PolicyResult()

        if isinstance(operation, CreateNodeOperation):
            hint = hints.get(operation.element_type_id)
            if not isinstance(hint, ShapeTypeHint):
                result.errors.append(f"'{operation.element_type_id}' is not a node type of this diagram")
                return result
            if operation.element_type_id in hidden_types:
                result.errors.append(f"'{operation.element_type_id}' belongs to an inactive layer")
            if operation.container_id is not None:
                container = index.get(operation.container_id)
                if container is None:
                    result.invalid_references.append(f"Unknown container '{operation.container_id}'")
                else:
                    TypeHintPolicy._check_containment(container, operation.element_type_id, hints, index, result)

        elif isinstance(operation, CreateEdgeOperation):
            hint = hints.get(operation.element_type_id)
            if not isinstance(hint, EdgeTypeHint):
                result.errors.append(f"'{operation.element_type_id}' is not an edge type of this diagram")
                return result
            if operation.element_type_id in hidden_types:
                result.errors.append(f"'{operation.element_type_id}' belongs to an inactive layer")
            TypeHintPolicy._check_endpoints(
                hint, operation.source_element_id, operation.target_element_id, index, result
            )

        elif isinstance(operation, DeleteElementOperation):
            if not operation.element_ids:
                result.invalid_references.append("deleteElement requires element_ids")
            for element_id in operation.element_ids:
                element = index.get(element_id)
                if element is None:
                    result.invalid_references.append(f"Cannot delete unknown element '{element_id}'")
                    continue
                if element_id == index.root.id:
                    result.errors.append("The model root cannot be deleted")
                    continue
                hint = hints.get(element.type)
                if hint is None or not hint.deletable:
                    result.errors.append(f"Element '{element_id}' of type '{element.type}' is not deletable")

        elif isinstance(operation, ChangeBoundsOperation):
            for entry in operation.new_bounds:
                element = index.get(entry.element_id)
                if element is None or element.is_edge or element.id == index.root.id:
                    result.invalid_references.append(f"Cannot change bounds of '{entry.element_id}'")
                    continue
                hint = hints.get(element.type)
                if not isinstance(hint, ShapeTypeHint) or not hint.repositionable:
                    result.errors.append(f"Element '{element.id}' of type '{element.type}' is not repositionable")
                    continue
                if element.size is not None and entry.new_size != element.size and not hint.resizable:
                    result.errors.append(f"Element '{element.id}' of type '{element.type}' is not resizable")

        elif isinstance(operation, ChangeContainerOperation):
            element = index.get(operation.element_id)
            container = index.get(operation.target_container_id)
            if element is None or element.id == index.root.id:
                result.invalid_references.append(f"Cannot move unknown element '{operation.element_id}'")
                return result
            if container is None:
                result.invalid_references.append(f"Unknown container '{operation.target_container_id}'")
                return result
            if container.id in index.subtree_ids(element.id):
                result.invalid_references.append(f"'{element.id}' cannot be moved into its own subtree")
                return result
            hint = hints.get(element.type)
            if not isinstance(hint, ShapeTypeHint) or not hint.reparentable:
                result.errors.append(f"Element '{element.id}' of type '{element.type}' cannot change container")
                return result
            TypeHintPolicy._check_containment(container, element.type, hints, index, result)

        elif isinstance(operation, ChangeRoutingPointsOperation):
            for entry in operation.new_routing_points:
                edge = index.get(entry.element_id)
                if edge is None or not edge.is_edge:
                    result.invalid_references.append(f"Unknown edge '{entry.element_id}'")
                    continue
                hint = hints.get(edge.type)
                if not isinstance(hint, EdgeTypeHint) or not hint.routable:
                    result.errors.append(f"Edge '{edge.id}' of type '{edge.type}' is not routable")

        elif isinstance(operation, ReconnectEdgeOperation):
            edge = index.get(operation.edge_element_id)
            if edge is None or not edge.is_edge:
                result.invalid_references.append(f"Unknown edge '{operation.edge_element_id}'")
                return result
            hint = hints.get(edge.type)
            if not isinstance(hint, EdgeTypeHint):
                result.errors.append(f"Edge '{edge.id}' has no edge type hint")
                return result
            TypeHintPolicy._check_endpoints(
                hint, operation.source_element_id, operation.target_element_id, index, result
            )

        elif isinstance(operation, ApplyLabelEditOperation):
            label = index.get(operation.label_id)
            if label is None or label.type != config.label_type:
                result.invalid_references.append(f"Unknown label '{operation.label_id}'")
            elif not operation.text.strip():
                result.errors.append("Label text must not be empty")

        return result

    @staticmethod
    def check_edge(
        hint: TypeHint | None,
        source_element_id: str,
        target_element_id: str,
        index: ModelIndex,
    ) -> PolicyResult:
        result = PolicyResult()
        if not isinstance(hint, EdgeTypeHint):
            result.errors.append("Unknown edge type")
            return result
        TypeHintPolicy._check_endpoints(hint, source_element_id, target_element_id, index, result)
        return result

    @staticmethod
    def _check_endpoints(
        hint: EdgeTypeHint,
        source_element_id: str,
        target_element_id: str,
        index: ModelIndex,
        result: PolicyResult,
    ) -> None:
        source = index.get(source_element_id)
        target = index.get(target_element_id)
        if source is None:
            result.invalid_references.append(f"Unknown source element '{source_element_id}'")
        if target is None:
            result.invalid_references.append(f"Unknown target element '{target_element_id}'")
        if source is None or target is None:
            return
        if not _allows_type(hint.source_element_type_ids, source.type):
            result.errors.append(f"'{hint.element_type_id}' cannot start at element of type '{source.type}'")
        if not _allows_type(hint.target_element_type_ids, target.type):
            result.errors.append(f"'{hint.element_type_id}' cannot end at element of type '{target.type}'")

    @staticmethod
    def _check_containment(
        container: ModelElement,
        element_type_id: str,
        hints: dict[str, TypeHint],
        index: ModelIndex,
        result: PolicyResult,
    ) -> None:
        if container.id == index.root.id:
            return
        container_hint = hints.get(container.type)
        if not isinstance(container_hint, ShapeTypeHint) or not container_hint.containable_element_type_ids:
            result.errors.append(f"Element '{container.id}' of type '{container.type}' is not a container")
            return
        if element_type_id not in container_hint.containable_element_type_ids:
            result.errors.append(f"'{container.type}' cannot contain elements of type '{element_type_id}'")
