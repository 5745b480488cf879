from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .models import DEFAULT_DIAGRAM_TYPE

BASE_DIR = Path(__file__).resolve().parent.parent
PROJECT_ROOT = BASE_DIR.parent
IN_MEMORY_STATE = ":memory:"


def load_project_env(path: Path) -> None:
    if not path.exists():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _flag(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    state_dir: Path | None
    needs_client_layout: bool
    animated_update: bool
    log_level: str
    default_diagram_type: str

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        raw_state_dir = env.get("DIAGRAM_STATE_DIR", "").strip()
        if raw_state_dir == IN_MEMORY_STATE:
            state_dir = None
        else:
            state_dir = Path(raw_state_dir) if raw_state_dir else BASE_DIR / "data"
        return cls(
            state_dir=state_dir,
            needs_client_layout=_flag(env.get("DIAGRAM_NEEDS_CLIENT_LAYOUT"), True),
            animated_update=_flag(env.get("DIAGRAM_ANIMATE"), True),
            log_level=env.get("DIAGRAM_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            default_diagram_type=env.get("DIAGRAM_DEFAULT_TYPE", DEFAULT_DIAGRAM_TYPE).strip() or DEFAULT_DIAGRAM_TYPE,
        )
