from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import Body, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .actions import ActionEnvelope, decode_envelope, encode_envelope, status_envelope
from .diagram_config import diagram_types
from .errors import DiagramServerError
from .services.session_service import SessionManager
from .settings import PROJECT_ROOT, Settings, load_project_env
from .storage import InMemoryModelStore, JsonModelStore
from .telemetry import TELEMETRY

logger = logging.getLogger(__name__)


def build_manager(settings: Settings) -> SessionManager:
    storage = JsonModelStore(settings.state_dir) if settings.state_dir is not None else InMemoryModelStore()
    return SessionManager(
        storage,
        default_diagram_type=settings.default_diagram_type,
        needs_client_layout=settings.needs_client_layout,
        animated_update=settings.animated_update,
    )


def _as_envelope(client_id: str, raw: Any) -> Any:
    """WebSocket frames may carry a full envelope or a bare action."""
    if isinstance(raw, dict) and "action" in raw and "kind" not in raw:
        return {**raw, "clientId": client_id}
    return {"clientId": client_id, "action": raw}


def create_app(manager: SessionManager) -> FastAPI:
    app = FastAPI(title="Diagram Session Server", version="0.1.0")
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/diagram-types")
    def get_diagram_types() -> list[str]:
        return diagram_types()

    @app.get("/sessions")
    def get_sessions() -> list[dict[str, Any]]:
        return manager.describe_sessions()

    @app.get("/telemetry")
    def get_telemetry() -> dict[str, Any]:
        return TELEMETRY.snapshot()

    @app.post("/envelope")
    async def post_envelope(payload: Any = Body(...)) -> list[dict[str, Any]]:
        try:
            envelope = decode_envelope(payload)
        except DiagramServerError as error:
            client_id = payload.get("clientId") if isinstance(payload, dict) else None
            if not isinstance(client_id, str) or not client_id:
                raise HTTPException(
                    status_code=400,
                    detail={"code": error.code, "message": error.message, "details": error.details},
                ) from error
            logger.info("Rejected envelope from %s: %s", client_id, error.message)
            status = status_envelope(client_id, error.severity, error.message, code=error.code, details=error.details)
            return [encode_envelope(status)]
        outbound = await manager.dispatch(envelope)
        return [encode_envelope(item) for item in outbound]

    @app.websocket("/ws/{client_id}")
    async def diagram_socket(websocket: WebSocket, client_id: str) -> None:
        await websocket.accept()

        async def send(envelope: ActionEnvelope) -> None:
            await websocket.send_json(encode_envelope(envelope))

        unsubscribe = manager.observers.subscribe(client_id, send)
        logger.info("WS connected: client=%s", client_id)
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    envelope = decode_envelope(_as_envelope(client_id, json.loads(raw)))
                except json.JSONDecodeError:
                    await send(status_envelope(client_id, "error", "Frame is not valid JSON", code="malformed_action"))
                    continue
                except DiagramServerError as error:
                    await send(status_envelope(client_id, error.severity, error.message, code=error.code, details=error.details))
                    continue
                outbound = await manager.dispatch(envelope)
                # Closing the session detaches this socket; answer it directly from then on.
                if not manager.observers.is_subscribed(client_id, send):
                    for item in outbound:
                        await send(item)
        except WebSocketDisconnect:
            logger.info("WS disconnected: client=%s", client_id)
        finally:
            unsubscribe()
            await manager.disconnect(client_id)

    return app


load_project_env(PROJECT_ROOT / ".env")
SETTINGS = Settings.from_env()
logging.basicConfig(
    level=getattr(logging, SETTINGS.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
app = create_app(build_manager(SETTINGS))
