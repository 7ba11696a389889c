from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Union

__all__ = [
    "EventKey",
    "Listener",
    "ListenerEntry",
    "ErrorRecord",
    "UnhandledErrorHook",
]


# --------- Primitive / aliases ---------
EventKey = Hashable
Listener = Callable[..., Optional[Awaitable[Any]]]


class _ErrorChannel:
    """Key type of the reserved error channel. Only one instance exists."""
    __slots__ = ()

    def __repr__(self) -> str:
        return "<error channel>"

    def __str__(self) -> str:
        return "error"


ERROR_CHANNEL = _ErrorChannel()


# --------- Listener table entries ---------
@dataclass(frozen=True, slots=True)
class ListenerEntry:
    """One subscription: the raw callback plus the invocable cached for dispatch."""
    event_name: EventKey
    callback: Listener
    bound: Callable[..., Any]

    @property
    def name(self) -> str:
        return getattr(self.callback, "__qualname__", None) or repr(self.callback)

    @property
    def is_error_listener(self) -> bool:
        return self.event_name is ERROR_CHANNEL


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    """A listener failure: who failed and what was raised."""
    listener: ListenerEntry
    reason: Any

    @property
    def event_name(self) -> EventKey:
        return self.listener.event_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": str(self.event_name),
            "listener": self.listener.name,
            "reason": repr(self.reason),
        }


UnhandledErrorHook = Callable[[ErrorRecord], Union[None, Awaitable[None]]]
