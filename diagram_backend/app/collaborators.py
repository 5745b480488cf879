"""Interfaces of the external collaborators the engine consumes."""

from __future__ import annotations

from typing import Protocol

from .models import Match, ModelRoot


class ModelStorage(Protocol):
    def load(self, source_uri: str) -> ModelRoot | None:
        """Return the stored model for ``source_uri`` or None when nothing is stored."""
        ...

    def save(self, source_uri: str, root: ModelRoot) -> None:
        """Persist ``root``; raise ``PersistenceError`` on failure."""
        ...


class ModelDiffer(Protocol):
    def diff(self, old_root: ModelRoot, new_root: ModelRoot) -> list[Match]:
        """Element-level matches used by clients to animate an update."""
        ...
