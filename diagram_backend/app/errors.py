"""
Diagram server error taxonomy.

Every error is reported to the originating client as a ``serverStatus`` action;
none of them terminates a session or the process.
"""

from __future__ import annotations

from typing import Any, Optional

from .models import Severity


class DiagramServerError(Exception):
    severity: Severity = "error"

    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class UnknownActionKind(DiagramServerError):
    def __init__(self, kind: str):
        super().__init__("unknown_action_kind", f"No handler registered for action kind '{kind}'", {"kind": kind})
        self.kind = kind


class UnknownSession(DiagramServerError):
    def __init__(self, client_id: str):
        super().__init__("unknown_session", f"No session for client '{client_id}'", {"clientId": client_id})
        self.client_id = client_id


class UnknownRequestId(DiagramServerError):
    severity: Severity = "warning"

    def __init__(self, request_id: str):
        super().__init__("unknown_request_id", f"No pending request with id '{request_id}'", {"id": request_id})
        self.request_id = request_id


class StaleBoundsReply(DiagramServerError):
    """Raised internally for late layout answers; never surfaced to the client."""

    def __init__(self, received_revision: int, current_revision: int):
        super().__init__(
            "stale_bounds_reply",
            f"Bounds computed for revision {received_revision}, model is at revision {current_revision}",
            {"receivedRevision": received_revision, "currentRevision": current_revision},
        )
        self.received_revision = received_revision
        self.current_revision = current_revision


class OperationNotPermitted(DiagramServerError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("operation_not_permitted", message, details)


class InvalidElementReference(DiagramServerError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("invalid_element_reference", message, details)


class MalformedAction(DiagramServerError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("malformed_action", message, details)


class PersistenceError(DiagramServerError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("persistence_error", message, details)
