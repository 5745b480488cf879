from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, AsyncContextManager, Awaitable, Callable, Protocol

from .actions import ActionEnvelope, IdentifiableRequestAction, IdentifiableResponseAction, ServerStatusAction
from .errors import DiagramServerError, StaleBoundsReply
from .registry import ActionRegistry
from .telemetry import TELEMETRY

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

Publish = Callable[[str, list[ActionEnvelope]], Awaitable[None]]


class SessionArena(Protocol):
    def acquire(self, client_id: str, kind: str) -> AsyncContextManager[Session]:
        """Resolve (or create) the session for ``client_id`` and hold its actor lock."""
        ...


def status_for(error: DiagramServerError) -> ServerStatusAction:
    return ServerStatusAction(severity=error.severity, message=error.message, code=error.code, details=error.details)


def gate_kind(action: Any) -> str:
    """Kind that decides whether ``action`` may open a session; wrappers defer to what they carry."""
    while isinstance(action, IdentifiableRequestAction):
        action = action.action
    return action.kind


class Dispatcher:
    """Routes one envelope to its registered handler inside the session's critical section.

    Domain errors never escape: they come back as a ``serverStatus`` envelope to
    the originating client. Stale bounds replies are dropped silently.
    """

    def __init__(self, registry: ActionRegistry, arena: SessionArena, publish: Publish | None = None):
        self.registry = registry
        self.arena = arena
        self.publish = publish

    async def dispatch(self, envelope: ActionEnvelope) -> list[ActionEnvelope]:
        client_id = envelope.client_id
        kind = envelope.action.kind
        with TELEMETRY.track(f"action.{kind}"):
            try:
                handler = self.registry.lookup(kind)
                async with self.arena.acquire(client_id, gate_kind(envelope.action)) as session:
                    actions = await handler(session, envelope.action)
                    outbound = [ActionEnvelope(client_id=client_id, action=action) for action in actions]
                    await self._publish(client_id, outbound)
                    return outbound
            except StaleBoundsReply as error:
                logger.debug("Discarding stale bounds reply from %s: %s", client_id, error.message)
                return []
            except DiagramServerError as error:
                logger.info("Action %s from %s failed: %s", kind, client_id, error.message)
                status: Any = status_for(error)
                if isinstance(envelope.action, IdentifiableRequestAction):
                    status = IdentifiableResponseAction(id=envelope.action.id, action=status)
                outbound = [ActionEnvelope(client_id=client_id, action=status)]
                await self._publish(client_id, outbound)
                return outbound

    async def route(self, session: Session, action: Any) -> list[Any]:
        """Run ``action`` for a session whose lock the caller already holds."""
        handler = self.registry.lookup(action.kind)
        return await handler(session, action)

    async def _publish(self, client_id: str, outbound: list[ActionEnvelope]) -> None:
        if self.publish is not None and outbound:
            await self.publish(client_id, outbound)
