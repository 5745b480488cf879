from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .errors import PersistenceError
from .models import ModelRoot


MODEL_STORE_VERSION = 1
_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_.\-]+")

logger = logging.getLogger(__name__)


class JsonModelStore:
    """Model persistence on a directory of JSON documents, one per source URI."""

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, source_uri: str) -> Path:
        name = _UNSAFE_CHARS_RE.sub("_", source_uri.strip()).strip("._") or "model"
        if not name.endswith(".json"):
            name = f"{name}.json"
        return self.state_dir / name

    def load(self, source_uri: str) -> ModelRoot | None:
        path = self.path_for(source_uri)
        raw_state = self._read_state(path)
        if raw_state is None:
            return None

        normalized = self._normalize_state(source_uri, raw_state)
        if normalized is None:
            logger.warning("Ignoring unreadable model state in %s", path)
            return None
        try:
            return ModelRoot.model_validate(normalized["model"])
        except ValidationError:
            logger.warning("Stored model in %s failed validation", path, exc_info=True)
            return None

    def save(self, source_uri: str, root: ModelRoot) -> None:
        stored = root.model_copy(deep=True)
        stored.revision = None
        state = {
            "model_store_version": MODEL_STORE_VERSION,
            "source_uri": source_uri,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "model": stored.to_wire(),
        }
        try:
            self._write_state(self.path_for(source_uri), state)
        except OSError as error:
            raise PersistenceError(
                f"Failed to save model to '{source_uri}'",
                {"sourceUri": source_uri, "reason": str(error)},
            ) from error

    @staticmethod
    def _normalize_state(source_uri: str, raw_state: Any) -> dict[str, Any] | None:
        if not isinstance(raw_state, dict):
            return None
        if isinstance(raw_state.get("model"), dict):
            return {
                "model_store_version": MODEL_STORE_VERSION,
                "source_uri": str(raw_state.get("source_uri") or source_uri),
                "model": raw_state["model"],
            }
        # Legacy format: the bare model document.
        if "type" in raw_state and "id" in raw_state:
            return {"model_store_version": MODEL_STORE_VERSION, "source_uri": source_uri, "model": raw_state}
        return None

    @staticmethod
    def _read_state(path: Path) -> Any | None:
        if not path.exists():
            return None
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError:
            logger.warning("Could not read %s", path, exc_info=True)
            return None
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # Interrupted writes leave partial documents behind; treat as absent.
            logger.warning("Corrupted model state in %s", path)
            return None

    def _write_state(self, path: Path, state: dict[str, Any]) -> None:
        payload = json.dumps(state, indent=2, ensure_ascii=False)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=path.parent,
                delete=False,
                prefix=f"{path.name}.",
                suffix=".tmp",
            ) as tmp_file:
                tmp_file.write(payload)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
                tmp_path = Path(tmp_file.name)

            os.replace(tmp_path, path)
        finally:
            if tmp_path and tmp_path.exists():
                tmp_path.unlink(missing_ok=True)


class InMemoryModelStore:
    """Volatile ``ModelStorage`` used when no state directory is configured."""

    def __init__(self) -> None:
        self._models: dict[str, dict[str, Any]] = {}

    def load(self, source_uri: str) -> ModelRoot | None:
        raw = self._models.get(source_uri)
        if raw is None:
            return None
        return ModelRoot.model_validate(raw)

    def save(self, source_uri: str, root: ModelRoot) -> None:
        stored = root.model_copy(deep=True)
        stored.revision = None
        self._models[source_uri] = stored.to_wire()
