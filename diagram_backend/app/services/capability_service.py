from __future__ import annotations

from typing import Callable

from ..actions import (
    AnyAction,
    RequestLayersAction,
    RequestOperationsAction,
    RequestToolsAction,
    SetLayersAction,
    SetOperationsAction,
    SetToolsAction,
    ToggleLayerAction,
)
from ..diagram_config import DiagramConfiguration
from ..errors import InvalidElementReference
from ..model_service import ModelIndex
from ..models import EdgeTypeHint, LayerDescriptor, ModelRoot, OperationDescriptor, ShapeTypeHint, ToolDescriptor, TypeHint
from ..session import Capability, Session

PublishModel = Callable[..., list[AnyAction]]


def compute_layers(config: DiagramConfiguration, active_layers: set[str]) -> list[LayerDescriptor]:
    return [
        LayerDescriptor(
            id=layer.layer_id,
            label=layer.label,
            element_type_ids=sorted(layer.element_type_ids),
            active=layer.layer_id in active_layers,
        )
        for layer in config.layers
    ]


def compute_tools(config: DiagramConfiguration, hints: dict[str, TypeHint], active_layers: set[str]) -> list[ToolDescriptor]:
    hidden = config.hidden_types(active_layers)
    tools: list[ToolDescriptor] = []
    for type_id, hint in hints.items():
        if type_id in hidden:
            continue
        layer = config.layer_for_type(type_id)
        tools.append(
            ToolDescriptor(
                id=f"tool:{type_id}",
                label=config.label_for(type_id),
                element_type_id=type_id,
                tool_kind="edge" if isinstance(hint, EdgeTypeHint) else "node",
                layer_id=layer.layer_id if layer else None,
            )
        )
    return tools


def compute_operations(
    config: DiagramConfiguration,
    hints: dict[str, TypeHint],
    active_layers: set[str],
    visible_root: ModelRoot | None,
) -> list[OperationDescriptor]:
    """Offered operations as a function of active layers and the visible model."""
    hidden = config.hidden_types(active_layers)
    element_types: set[str] = set()
    if visible_root is not None:
        index = ModelIndex(visible_root)
        element_types = {element.type for element in index.elements.values() if element.id != visible_root.id}

    def any_type(predicate: Callable[[TypeHint], bool]) -> bool:
        for type_id in element_types:
            hint = hints.get(type_id)
            if hint is not None and predicate(hint):
                return True
        return False

    def endpoint_present(allowed: list[str] | None) -> bool:
        if allowed is None:
            return bool(element_types)
        return bool(element_types.intersection(allowed))

    operations: list[OperationDescriptor] = []
    for type_id, hint in hints.items():
        if type_id in hidden:
            continue
        if isinstance(hint, ShapeTypeHint):
            operations.append(
                OperationDescriptor(
                    id=f"createNode:{type_id}",
                    element_type_id=type_id,
                    label=f"Create {config.label_for(type_id)}",
                    operation_kind="createNode",
                )
            )
        else:
            operations.append(
                OperationDescriptor(
                    id=f"createConnection:{type_id}",
                    element_type_id=type_id,
                    label=f"Connect with {config.label_for(type_id)}",
                    operation_kind="createConnection",
                    active=endpoint_present(hint.source_element_type_ids)
                    and endpoint_present(hint.target_element_type_ids),
                )
            )

    has_container = any_type(lambda hint: isinstance(hint, ShapeTypeHint) and bool(hint.containable_element_type_ids))
    operations.extend(
        [
            OperationDescriptor(
                id="delete",
                label="Delete",
                operation_kind="delete",
                active=any_type(lambda hint: hint.deletable),
            ),
            OperationDescriptor(
                id="changeBounds",
                label="Move / Resize",
                operation_kind="changeBounds",
                active=any_type(lambda hint: isinstance(hint, ShapeTypeHint) and hint.repositionable),
            ),
            OperationDescriptor(
                id="changeContainer",
                label="Change Container",
                operation_kind="changeContainer",
                active=has_container
                and any_type(lambda hint: isinstance(hint, ShapeTypeHint) and hint.reparentable),
            ),
            OperationDescriptor(
                id="applyLabelEdit",
                label="Edit Label",
                operation_kind="generic",
                active=config.label_type in element_types,
            ),
        ]
    )
    return operations


class CapabilityService:
    """Layers, tools and operations offered to one session.

    Toggling a layer recomputes the visible model, the tool list and the
    operation list in that order; only lists that differ from what the client
    last received are broadcast again.
    """

    def __init__(self, publish_model: PublishModel):
        self.publish_model = publish_model

    async def handle(self, session: Session, action: AnyAction) -> list[AnyAction]:
        if isinstance(action, RequestToolsAction):
            session.last_tools = self._tools(session)
            session.satisfy(Capability.TOOLS)
            return [SetToolsAction(tools=session.last_tools)]

        if isinstance(action, RequestLayersAction):
            session.last_layers = compute_layers(session.config, session.active_layers)
            session.satisfy(Capability.LAYERS)
            return [SetLayersAction(layers=session.last_layers)]

        if isinstance(action, RequestOperationsAction):
            session.last_operations = self._operations(session)
            return [SetOperationsAction(operations=session.last_operations)]

        if isinstance(action, ToggleLayerAction):
            return self.toggle_layer(session, action)

        raise TypeError(f"unexpected action {action.kind}")

    def toggle_layer(self, session: Session, action: ToggleLayerAction) -> list[AnyAction]:
        layer = session.config.layer(action.layer_id)
        if layer is None:
            raise InvalidElementReference(f"Unknown layer '{action.layer_id}'", {"layerId": action.layer_id})

        currently_active = layer.layer_id in session.active_layers
        activate = (not currently_active) if action.active is None else action.active
        if activate == currently_active:
            return []

        working_root = session.working_root
        previous_visible = session.visible(working_root) if working_root is not None else None
        if activate:
            session.active_layers.add(layer.layer_id)
        else:
            session.active_layers.discard(layer.layer_id)

        outbound: list[AnyAction] = []
        if working_root is not None and session.visible(working_root) != previous_visible:
            outbound.extend(self.publish_model(session, working_root, force_layout=True))
        outbound.extend(self.refresh(session))
        return outbound

    def refresh(self, session: Session) -> list[AnyAction]:
        """Re-broadcast layer, tool and operation lists that changed since the client last saw them."""
        outbound: list[AnyAction] = []
        if session.last_layers is not None:
            layers = compute_layers(session.config, session.active_layers)
            if layers != session.last_layers:
                session.last_layers = layers
                outbound.append(SetLayersAction(layers=layers))
        if session.last_tools is not None:
            tools = self._tools(session)
            if tools != session.last_tools:
                session.last_tools = tools
                outbound.append(SetToolsAction(tools=tools))
        if session.last_operations is not None:
            operations = self._operations(session)
            if operations != session.last_operations:
                session.last_operations = operations
                outbound.append(SetOperationsAction(operations=operations))
        return outbound

    @staticmethod
    def _tools(session: Session) -> list[ToolDescriptor]:
        return compute_tools(session.config, session.type_hints, session.active_layers)

    @staticmethod
    def _operations(session: Session) -> list[OperationDescriptor]:
        working_root = session.working_root
        visible_root = session.visible(working_root) if working_root is not None else None
        return compute_operations(session.config, session.type_hints, session.active_layers, visible_root)
