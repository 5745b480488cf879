from __future__ import annotations

import asyncio

from diagram_backend.app.actions import (
    ActionEnvelope,
    AnyAction,
    RequestLayersAction,
    RequestModelAction,
    RequestToolsAction,
)
from diagram_backend.app.models import Dimension, ModelElement, ModelRoot, Point
from diagram_backend.app.services.session_service import SessionManager


def envelope(client_id: str, action: AnyAction) -> ActionEnvelope:
    return ActionEnvelope(client_id=client_id, action=action)


def kinds(outbound: list[ActionEnvelope]) -> list[str]:
    return [item.action.kind for item in outbound]


def seeded_model() -> ModelRoot:
    """Fully laid out workflow: start -> task, plus an empty lane."""
    return ModelRoot(
        type="graph",
        id="root",
        children=[
            ModelElement(type="start", id="start", position=Point(x=0, y=0), size=Dimension(width=30, height=30)),
            ModelElement(
                type="task",
                id="task",
                position=Point(x=100, y=0),
                size=Dimension(width=120, height=60),
                children=[
                    ModelElement(
                        type="label",
                        id="task_label",
                        text="Review",
                        position=Point(),
                        size=Dimension(width=80, height=20),
                    )
                ],
            ),
            ModelElement(type="lane", id="lane", position=Point(x=0, y=200), size=Dimension(width=400, height=200)),
            ModelElement(type="edge", id="flow", source_id="start", target_id="task"),
        ],
    )


async def open_ready_session(manager: SessionManager, client_id: str = "client-1", **options: str) -> list[ActionEnvelope]:
    outbound: list[ActionEnvelope] = []
    outbound += await manager.dispatch(envelope(client_id, RequestModelAction(options=options)))
    outbound += await manager.dispatch(envelope(client_id, RequestToolsAction()))
    outbound += await manager.dispatch(envelope(client_id, RequestLayersAction()))
    return outbound


class RecordingSink:
    def __init__(self) -> None:
        self.received: list[ActionEnvelope] = []
        self.arrived = asyncio.Event()

    async def __call__(self, item: ActionEnvelope) -> None:
        self.received.append(item)
        self.arrived.set()

    async def next_arrival(self, timeout: float = 1.0) -> ActionEnvelope:
        await asyncio.wait_for(self.arrived.wait(), timeout)
        self.arrived.clear()
        return self.received[-1]
