"""
Per-client session record and its capability/bounds state machine.

``UNINITIALIZED -> AWAITING_CAPABILITIES -> READY <-> AWAITING_BOUNDS -> CLOSED``

The state is derived in one place (``Session.refresh_state``) from the set of
satisfied capabilities and the pending bounds request.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .diagram_config import DiagramConfiguration
from .model_service import visible_subset
from .models import LayerDescriptor, ModelRoot, OperationDescriptor, ToolDescriptor, TypeHint

UNDO_LIMIT = 100


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_CAPABILITIES = "awaitingCapabilities"
    READY = "ready"
    AWAITING_BOUNDS = "awaitingBounds"
    CLOSED = "closed"


class Capability(str, Enum):
    MODEL = "model"
    TOOLS = "tools"
    LAYERS = "layers"


REQUIRED_CAPABILITIES = frozenset(Capability)


@dataclass
class PendingBounds:
    requested_revision: int
    candidate_root: ModelRoot


@dataclass
class Session:
    client_id: str
    config: DiagramConfiguration
    source_uri: str
    state: SessionState = SessionState.UNINITIALIZED
    model_revision: int = 0
    root: ModelRoot | None = None
    pending_bounds: PendingBounds | None = None
    pending_identifiable_requests: dict[str, asyncio.Future[Any]] = field(default_factory=dict)
    active_layers: set[str] = field(default_factory=set)
    type_hints: dict[str, TypeHint] = field(default_factory=dict)
    satisfied: set[Capability] = field(default_factory=set)
    queued_edits: deque[Any] = field(default_factory=deque)
    selection: set[str] = field(default_factory=set)
    dirty: bool = False
    undo_stack: list[ModelRoot] = field(default_factory=list)
    redo_stack: list[ModelRoot] = field(default_factory=list)
    last_layers: list[LayerDescriptor] | None = None
    last_tools: list[ToolDescriptor] | None = None
    last_operations: list[OperationDescriptor] | None = None

    @classmethod
    def open(cls, client_id: str, config: DiagramConfiguration, source_uri: str) -> Session:
        session = cls(client_id=client_id, config=config, source_uri=source_uri)
        session.reconfigure(config, source_uri)
        return session

    def reconfigure(self, config: DiagramConfiguration, source_uri: str) -> None:
        """Switch diagram type or source before the first model is loaded."""
        if self.has_model:
            raise RuntimeError("cannot reconfigure a session that already holds a model")
        self.config = config
        self.source_uri = source_uri
        self.active_layers = config.default_active_layers()
        self.type_hints = config.type_hints()
        self.refresh_state()

    def refresh_state(self) -> SessionState:
        if self.state is SessionState.CLOSED:
            return self.state
        if self.pending_bounds is not None:
            self.state = SessionState.AWAITING_BOUNDS
        elif self.satisfied >= REQUIRED_CAPABILITIES:
            self.state = SessionState.READY
        else:
            self.state = SessionState.AWAITING_CAPABILITIES
        return self.state

    def satisfy(self, capability: Capability) -> None:
        self.satisfied.add(capability)
        self.refresh_state()

    def close(self) -> None:
        self.state = SessionState.CLOSED
        self.pending_bounds = None
        self.queued_edits.clear()
        for future in self.pending_identifiable_requests.values():
            if not future.done():
                future.cancel()
        self.pending_identifiable_requests.clear()

    @property
    def accepts_edits(self) -> bool:
        return self.state is SessionState.READY

    @property
    def has_model(self) -> bool:
        return self.root is not None or self.pending_bounds is not None

    @property
    def working_root(self) -> ModelRoot | None:
        """Newest model version, including one still waiting for client bounds."""
        if self.pending_bounds is not None:
            return self.pending_bounds.candidate_root
        return self.root

    @property
    def hidden_types(self) -> frozenset[str]:
        return self.config.hidden_types(self.active_layers)

    def visible(self, root: ModelRoot) -> ModelRoot:
        return visible_subset(root, self.hidden_types)

    def remember_for_undo(self, root: ModelRoot) -> None:
        self.undo_stack.append(root.model_copy(deep=True))
        if len(self.undo_stack) > UNDO_LIMIT:
            del self.undo_stack[0]
        self.redo_stack.clear()
