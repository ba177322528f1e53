"""Hook registry for webhook delivery lifecycle callbacks."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class HookName(str, Enum):
    EVENT_RECEIVED = "event_received"
    EVENT_NORMALIZED = "event_normalized"
    EVENT_STORED = "event_stored"
    ON_ERROR = "on_error"


HookCallback = Callable[[dict[str, Any]], None]


def action_hook(kind: str, action: str) -> str:
    """Name of the action-scoped hook, e.g. ``pull_request.opened``."""
    return f"{kind}.{action}"


class HookManager:
    """In-process hook manager with deterministic callback ordering.

    Callbacks are keyed either by a ``HookName`` or by an action-scoped
    string from ``action_hook``. A failing callback is reported to the
    ``ON_ERROR`` callbacks and never interrupts the delivery being processed.
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, list[HookCallback]] = defaultdict(list)

    def register(self, name: HookName | str, callback: HookCallback) -> None:
        self._callbacks[self._key(name)].append(callback)

    def emit(self, name: HookName | str, context: dict[str, Any]) -> None:
        key = self._key(name)
        for callback in list(self._callbacks.get(key, ())):
            try:
                callback(dict(context))
            except Exception as exc:
                logger.exception("Hook %s failed", key)
                if key != HookName.ON_ERROR.value:
                    self._emit_error(exc, key, context)

    def _emit_error(self, exc: Exception, hook: str, context: dict[str, Any]) -> None:
        for callback in list(self._callbacks.get(HookName.ON_ERROR.value, ())):
            try:
                callback({"exception": exc, "hook": hook, **context})
            except Exception:
                logger.exception("Error hook failed while handling %s", hook)

    @staticmethod
    def _key(name: HookName | str) -> str:
        return name.value if isinstance(name, HookName) else name
