from __future__ import annotations

import logging
from typing import Callable

from ..actions import AnyAction, RedoAction, ServerStatusAction, SetDirtyStateAction, UndoAction
from ..errors import InvalidElementReference, OperationNotPermitted
from ..model_service import EditOperation, ModelIndex, apply_operation, ensure_integrity
from ..models import ModelRoot
from ..policy import TypeHintPolicy
from ..session import UNDO_LIMIT, Session

logger = logging.getLogger(__name__)

PublishModel = Callable[..., list[AnyAction]]
RefreshCapabilities = Callable[[Session], list[AnyAction]]


class EditPipeline:
    """Validate an edit against type hints, apply it, then publish the result.

    The session's model is only replaced after validation and the integrity
    check both pass, so a rejected edit leaves the model and revision as they
    were.
    """

    def __init__(self, publish_model: PublishModel, refresh_capabilities: RefreshCapabilities):
        self.publish_model = publish_model
        self.refresh_capabilities = refresh_capabilities

    async def handle(self, session: Session, action: AnyAction) -> list[AnyAction]:
        current = session.working_root
        if current is None:
            raise InvalidElementReference("Session has no model to edit")

        if isinstance(action, UndoAction):
            return self._undo(session, current)
        if isinstance(action, RedoAction):
            return self._redo(session, current)

        updated = self.validate_and_apply(session, current, action)
        session.remember_for_undo(current)
        return self._publish(session, updated)

    def validate_and_apply(self, session: Session, current: ModelRoot, operation: EditOperation) -> ModelRoot:
        hidden_types = session.hidden_types
        index = ModelIndex(session.visible(current))
        result = TypeHintPolicy.validate_operation(
            operation,
            index,
            session.type_hints,
            session.config,
            hidden_types,
        )
        if result.invalid_references:
            raise InvalidElementReference(
                "; ".join(result.invalid_references),
                {"kind": operation.kind, "errors": result.invalid_references},
            )
        if result.errors:
            raise OperationNotPermitted(
                "; ".join(result.errors),
                {"kind": operation.kind, "errors": result.errors},
            )

        updated = apply_operation(current, operation, session.config)
        ensure_integrity(updated)
        return updated

    def _undo(self, session: Session, current: ModelRoot) -> list[AnyAction]:
        if not session.undo_stack:
            return [ServerStatusAction(severity="info", message="Nothing to undo", code="undo_empty")]
        previous = session.undo_stack.pop()
        session.redo_stack.append(current.model_copy(deep=True))
        return self._publish(session, previous)

    def _redo(self, session: Session, current: ModelRoot) -> list[AnyAction]:
        if not session.redo_stack:
            return [ServerStatusAction(severity="info", message="Nothing to redo", code="redo_empty")]
        following = session.redo_stack.pop()
        session.undo_stack.append(current.model_copy(deep=True))
        if len(session.undo_stack) > UNDO_LIMIT:
            del session.undo_stack[0]
        return self._publish(session, following)

    def _publish(self, session: Session, updated: ModelRoot) -> list[AnyAction]:
        outbound = list(self.publish_model(session, updated))
        logger.debug("Session %s moved to revision %s", session.client_id, session.model_revision)
        if not session.dirty:
            session.dirty = True
            outbound.append(SetDirtyStateAction(is_dirty=True, reason="operation"))
        outbound.extend(self.refresh_capabilities(session))
        return outbound
