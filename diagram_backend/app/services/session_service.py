"""
Session arena and protocol wiring.

``SessionManager`` owns every live ``Session``, serializes the envelopes of one
client behind a per-client ``asyncio.Lock`` and registers the handlers of all
action kinds on a single frozen ``ActionRegistry``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, AsyncIterator, Mapping
from uuid import uuid4

from ..actions import (
    BOUNDS_KINDS,
    CAPABILITY_KINDS,
    CAPABILITY_REQUEST_KINDS,
    EDIT_KINDS,
    ActionEnvelope,
    AnyAction,
    CheckEdgeResultAction,
    DisposeClientSessionAction,
    ExportResultAction,
    IdentifiableRequestAction,
    IdentifiableResponseAction,
    RequestCheckEdgeAction,
    RequestExportAction,
    RequestModelAction,
    RequestTypeHintsAction,
    SaveModelAction,
    SelectElementsAction,
    ServerStatusAction,
    SetDirtyStateAction,
    SetModelAction,
    SetTypeHintsAction,
)
from ..collaborators import ModelDiffer, ModelStorage
from ..diagram_config import DIAGRAM_CONFIGURATIONS, DiagramConfiguration
from ..dispatcher import Dispatcher, status_for
from ..errors import (
    DiagramServerError,
    InvalidElementReference,
    MalformedAction,
    StaleBoundsReply,
    UnknownRequestId,
    UnknownSession,
)
from ..model_service import ModelIndex, ensure_integrity
from ..models import DEFAULT_DIAGRAM_TYPE, DEFAULT_SOURCE_URI, EdgeTypeHint, ModelRoot, ShapeTypeHint
from ..observers import ObserverList
from ..policy import TypeHintPolicy
from ..registry import ActionRegistry, Handler
from ..session import Session, SessionState
from .bounds_service import BoundsCoordinator
from .capability_service import CapabilityService
from .edit_service import EditPipeline

logger = logging.getLogger(__name__)


class SessionManager:
    def __init__(
        self,
        storage: ModelStorage,
        *,
        configurations: Mapping[str, DiagramConfiguration] | None = None,
        default_diagram_type: str = DEFAULT_DIAGRAM_TYPE,
        default_source_uri: str = DEFAULT_SOURCE_URI,
        differ: ModelDiffer | None = None,
        needs_client_layout: bool | None = None,
        animated_update: bool | None = None,
    ):
        self.storage = storage
        self.configurations = dict(configurations if configurations is not None else DIAGRAM_CONFIGURATIONS)
        self.default_diagram_type = default_diagram_type
        self.default_source_uri = default_source_uri
        self.needs_client_layout = needs_client_layout
        self.animated_update = animated_update

        self.observers = ObserverList()
        self.bounds = BoundsCoordinator(differ)
        self.capabilities = CapabilityService(publish_model=self.bounds.submit)
        self.edits = EditPipeline(publish_model=self.bounds.submit, refresh_capabilities=self.capabilities.refresh)

        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        # Closed client ids. Never pruned: a closed id stays closed for the life of
        # the process, so the set grows by one entry per disposed client.
        self._closed: set[str] = set()

        self.registry = self._build_registry()
        self.dispatcher = Dispatcher(self.registry, self, publish=self.observers.publish)

    # Arena

    @asynccontextmanager
    async def acquire(self, client_id: str, kind: str) -> AsyncIterator[Session]:
        if client_id in self._closed:
            raise UnknownSession(client_id)
        lock = self._locks.get(client_id)
        if lock is None:
            if kind not in CAPABILITY_REQUEST_KINDS:
                raise UnknownSession(client_id)
            lock = self._locks.setdefault(client_id, asyncio.Lock())

        async with lock:
            # The session may have been closed while this envelope waited for the lock.
            if client_id in self._closed:
                raise UnknownSession(client_id)
            session = self._sessions.get(client_id)
            if session is None:
                if kind not in CAPABILITY_REQUEST_KINDS:
                    raise UnknownSession(client_id)
                session = Session.open(client_id, self.configuration(self.default_diagram_type), self.default_source_uri)
                self._sessions[client_id] = session
                logger.info("Opened session for %s (%s)", client_id, session.config.diagram_type)
            yield session

    def configuration(self, diagram_type: str) -> DiagramConfiguration:
        config = self.configurations.get(diagram_type)
        if config is None:
            raise MalformedAction(
                f"Unknown diagram type '{diagram_type}'",
                {"diagramType": diagram_type, "known": sorted(self.configurations)},
            )
        overrides: dict[str, bool] = {}
        if self.needs_client_layout is not None:
            overrides["needs_client_layout"] = self.needs_client_layout
        if self.animated_update is not None:
            overrides["animated_update"] = self.animated_update
        return replace(config, **overrides) if overrides else config

    def get_session(self, client_id: str) -> Session | None:
        return self._sessions.get(client_id)

    def describe_sessions(self) -> list[dict[str, Any]]:
        return [
            {
                "clientId": session.client_id,
                "state": session.state.value,
                "diagramType": session.config.diagram_type,
                "sourceUri": session.source_uri,
                "modelRevision": session.model_revision,
                "dirty": session.dirty,
                "queuedEdits": len(session.queued_edits),
                "observers": self.observers.observer_count(session.client_id),
            }
            for session in self._sessions.values()
        ]

    # Entry points

    async def dispatch(self, envelope: ActionEnvelope) -> list[ActionEnvelope]:
        return await self.dispatcher.dispatch(envelope)

    async def request(self, client_id: str, action: AnyAction, timeout: float | None = None) -> AnyAction:
        """Send ``action`` to the client as an identifiable request and await its correlated response."""
        request_id = uuid4().hex
        future: asyncio.Future[AnyAction] = asyncio.get_running_loop().create_future()
        async with self.acquire(client_id, "identifiableRequestAction") as session:
            session.pending_identifiable_requests[request_id] = future
            envelope = ActionEnvelope(client_id=client_id, action=IdentifiableRequestAction(id=request_id, action=action))
            await self.observers.publish(client_id, [envelope])

        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            session.pending_identifiable_requests.pop(request_id, None)

    async def disconnect(self, client_id: str) -> None:
        lock = self._locks.get(client_id)
        if lock is None:
            return
        async with lock:
            session = self._sessions.get(client_id)
            if session is not None:
                self._close(session)

    def _close(self, session: Session) -> None:
        session.close()
        self._sessions.pop(session.client_id, None)
        self._locks.pop(session.client_id, None)
        self._closed.add(session.client_id)
        self.observers.drop(session.client_id)
        logger.info("Closed session for %s", session.client_id)

    # Handlers

    def _build_registry(self) -> ActionRegistry:
        registry = ActionRegistry()
        registry.register_all(EDIT_KINDS, self._draining(self._handle_edit))
        registry.register_all(BOUNDS_KINDS, self._draining(self.bounds.handle))
        registry.register_all(CAPABILITY_KINDS, self._draining(self.capabilities.handle))
        lifecycle: dict[str, Handler] = {
            "requestModel": self._request_model,
            "requestTypeHints": self._request_type_hints,
            "selectElements": self._select_elements,
            "saveModel": self._save_model,
            "requestExport": self._request_export,
            "requestCheckEdge": self._request_check_edge,
            "disposeClientSession": self._dispose,
            "identifiableRequestAction": self._identifiable_request,
            "identifiableResponseAction": self._identifiable_response,
        }
        for kind, handler in lifecycle.items():
            registry.register(kind, self._draining(handler))
        registry.freeze()
        return registry

    def _draining(self, handler: Handler) -> Handler:
        async def run(session: Session, action: Any) -> list[Any]:
            outbound = list(await handler(session, action))
            outbound.extend(await self._drain(session))
            return outbound

        return run

    async def _drain(self, session: Session) -> list[AnyAction]:
        """Replay edits that arrived before the session was ready, in arrival order."""
        outbound: list[AnyAction] = []
        while session.queued_edits and session.accepts_edits:
            queued = session.queued_edits.popleft()
            try:
                outbound.extend(await self.edits.handle(session, queued))
            except DiagramServerError as error:
                logger.info("Queued %s for %s failed: %s", queued.kind, session.client_id, error.message)
                outbound.append(status_for(error))
        return outbound

    async def _handle_edit(self, session: Session, action: Any) -> list[AnyAction]:
        if not session.accepts_edits:
            session.queued_edits.append(action)
            logger.debug("Queued %s for %s while %s", action.kind, session.client_id, session.state.value)
            return []
        return await self.edits.handle(session, action)

    async def _request_model(self, session: Session, action: RequestModelAction) -> list[AnyAction]:
        if session.pending_bounds is not None:
            return [self.bounds.bounds_request(session)]
        if session.root is not None:
            return [SetModelAction(new_root=session.visible(session.root))]

        outbound: list[AnyAction] = []
        diagram_type = action.options.get("diagramType")
        source_uri = action.options.get("sourceUri")
        if diagram_type is not None or source_uri is not None:
            config = self.configuration(str(diagram_type)) if diagram_type is not None else session.config
            session.reconfigure(config, str(source_uri) if source_uri is not None else session.source_uri)
            outbound.extend(self.capabilities.refresh(session))

        root = self.storage.load(session.source_uri)
        if root is None:
            root = session.config.build_empty_model()
        else:
            ensure_integrity(root)
        outbound[:0] = self.bounds.submit(session, root)
        return outbound

    async def _request_type_hints(self, session: Session, action: RequestTypeHintsAction) -> list[AnyAction]:
        session.type_hints = session.config.type_hints()
        shape_hints = [hint for hint in session.type_hints.values() if isinstance(hint, ShapeTypeHint)]
        edge_hints = [hint for hint in session.type_hints.values() if isinstance(hint, EdgeTypeHint)]
        return [SetTypeHintsAction(shape_hints=shape_hints, edge_hints=edge_hints)]

    async def _select_elements(self, session: Session, action: SelectElementsAction) -> list[AnyAction]:
        index = ModelIndex(session.visible(self._require_model(session)))
        unknown = [
            element_id
            for element_id in (*action.selected_elements_ids, *action.deselected_elements_ids)
            if not index.contains(element_id)
        ]
        if unknown:
            raise InvalidElementReference(f"Unknown element ids: {', '.join(unknown)}", {"elementIds": unknown})

        if action.deselect_all:
            session.selection.clear()
        session.selection.difference_update(action.deselected_elements_ids)
        session.selection.update(action.selected_elements_ids)
        return []

    async def _save_model(self, session: Session, action: SaveModelAction) -> list[AnyAction]:
        root = self._require_model(session, committed=True)
        target_uri = action.file_uri or session.source_uri
        self.storage.save(target_uri, root)
        session.dirty = False
        logger.info("Saved model of %s to %s at revision %s", session.client_id, target_uri, session.model_revision)
        return [SetDirtyStateAction(is_dirty=False, reason="save")]

    async def _request_export(self, session: Session, action: RequestExportAction) -> list[AnyAction]:
        root = self._require_model(session, committed=True)
        return [ExportResultAction(format=action.format, content=root.to_wire())]

    async def _request_check_edge(self, session: Session, action: RequestCheckEdgeAction) -> list[AnyAction]:
        index = ModelIndex(session.visible(self._require_model(session)))
        result = TypeHintPolicy.check_edge(
            session.type_hints.get(action.edge_type),
            action.source_element_id,
            action.target_element_id,
            index,
        )
        problems = [*result.invalid_references, *result.errors]
        return [
            CheckEdgeResultAction(
                is_valid=result.ok,
                edge_type=action.edge_type,
                source_element_id=action.source_element_id,
                target_element_id=action.target_element_id,
                reason="; ".join(problems) or None,
            )
        ]

    async def _dispose(self, session: Session, action: DisposeClientSessionAction) -> list[AnyAction]:
        self._close(session)
        return []

    async def _identifiable_request(self, session: Session, action: IdentifiableRequestAction) -> list[AnyAction]:
        try:
            responses = await self.dispatcher.route(session, action.action)
        except StaleBoundsReply:
            raise
        except DiagramServerError as error:
            logger.info("Identifiable request %s from %s failed: %s", action.id, session.client_id, error.message)
            responses = [status_for(error)]

        if not responses:
            if session.state is SessionState.CLOSED:
                return []
            responses = [ServerStatusAction(severity="info", message=f"{action.action.kind} accepted")]
        first, *rest = responses
        return [IdentifiableResponseAction(id=action.id, action=first), *rest]

    async def _identifiable_response(self, session: Session, action: IdentifiableResponseAction) -> list[AnyAction]:
        future = session.pending_identifiable_requests.pop(action.id, None)
        if future is None or future.done():
            logger.warning("Dropping response %s from %s: no matching request", action.id, session.client_id)
            raise UnknownRequestId(action.id)
        future.set_result(action.action)
        return []

    @staticmethod
    def _require_model(session: Session, committed: bool = False) -> ModelRoot:
        root = session.root if committed else session.working_root
        if root is None:
            raise InvalidElementReference("Session has no model yet", {"clientId": session.client_id})
        return root
