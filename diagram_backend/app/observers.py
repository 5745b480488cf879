"""Fan-out of outbound envelopes to the sinks attached to a session."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Awaitable, Callable

from .actions import ActionEnvelope

logger = logging.getLogger(__name__)

Sink = Callable[[ActionEnvelope], Awaitable[None]]


class ObserverList:
    def __init__(self) -> None:
        self._sinks: dict[str, list[Sink]] = defaultdict(list)

    def subscribe(self, client_id: str, sink: Sink) -> Callable[[], None]:
        """Attach ``sink`` to ``client_id``. Returns a function that detaches it again."""
        self._sinks[client_id].append(sink)

        def remove() -> None:
            sinks = self._sinks.get(client_id)
            if not sinks:
                return
            try:
                sinks.remove(sink)
            except ValueError:
                pass
            if not sinks:
                self._sinks.pop(client_id, None)

        return remove

    def observer_count(self, client_id: str) -> int:
        return len(self._sinks.get(client_id, []))

    def is_subscribed(self, client_id: str, sink: Sink) -> bool:
        return sink in self._sinks.get(client_id, [])

    def drop(self, client_id: str) -> None:
        self._sinks.pop(client_id, None)

    async def publish(self, client_id: str, envelopes: list[ActionEnvelope]) -> None:
        for sink in list(self._sinks.get(client_id, [])):
            for envelope in envelopes:
                try:
                    await sink(envelope)
                except Exception:
                    logger.warning("Observer of %s failed to receive %s", client_id, envelope.action.kind, exc_info=True)
                    break
