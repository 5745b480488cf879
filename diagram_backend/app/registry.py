"""Process-wide kind -> handler table. Read-only once frozen."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from .actions import ACTION_KINDS
from .errors import UnknownActionKind

if TYPE_CHECKING:
    from .session import Session

Handler = Callable[["Session", Any], Awaitable[list[Any]]]


class ActionRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._frozen = False

    def register(self, kind: str, handler: Handler) -> None:
        if self._frozen:
            raise RuntimeError("action registry is frozen")
        if kind not in ACTION_KINDS:
            raise ValueError(f"'{kind}' is not a known action kind")
        if kind in self._handlers:
            raise ValueError(f"a handler for '{kind}' is already registered")
        self._handlers[kind] = handler

    def register_all(self, kinds: Iterable[str], handler: Handler) -> None:
        for kind in sorted(kinds):
            self.register(kind, handler)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, kind: str) -> Handler:
        handler = self._handlers.get(kind)
        if handler is None:
            raise UnknownActionKind(kind)
        return handler

    def kinds(self) -> list[str]:
        return sorted(self._handlers.keys())
