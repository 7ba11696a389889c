from __future__ import annotations

import contextvars
import functools
import inspect
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from asyncemit.core import log
from asyncemit.core.contracts import (
    ERROR_CHANNEL,
    ErrorRecord,
    EventKey,
    Listener,
    ListenerEntry,
    UnhandledErrorHook,
)
from asyncemit.core.metrics import inc_counter, observe_hist, set_gauge

__all__ = ["AsyncEmitter", "current_emitter"]

_log = log.get("emitter")

_current: contextvars.ContextVar[Optional["AsyncEmitter"]] = contextvars.ContextVar(
    "asyncemit_current_emitter", default=None
)


def current_emitter() -> Optional["AsyncEmitter"]:
    """The emitter whose dispatch is running in this context, if any."""
    return _current.get()


class AsyncEmitter:
    """
    In-process pub/sub with awaited listeners.

    - subscribe(event, fn) / subscribe_error(fn) append listeners
    - await dispatch(event, *args) calls every listener in registration order,
      then awaits the awaitable results one by one in that same order
    - a listener failure becomes an ErrorRecord for the error listeners; with no
      error listeners, or when an error listener fails too, the record goes to
      on_unhandled_error

    dispatch never raises for listener failures.
    """

    def __init__(self, name: str = "emitter", on_unhandled_error: Optional[UnhandledErrorHook] = None):
        self.name = name
        self.l = log.get(name)
        self._listeners: Dict[EventKey, List[ListenerEntry]] = {}
        if on_unhandled_error is None:
            on_unhandled_error = type(self).default_unhandled_error
        self.on_unhandled_error: UnhandledErrorHook = on_unhandled_error

    def __repr__(self) -> str:
        return f"<AsyncEmitter name={self.name!r} events={len(self.event_names())}>"

    @staticmethod
    def default_unhandled_error(record: ErrorRecord) -> None:
        """Class-wide fallback hook: log the record with its traceback."""
        reason = record.reason
        exc_info = (type(reason), reason, reason.__traceback__) if isinstance(reason, BaseException) else None
        _log.error(
            "unhandled listener error event=%s listener=%s reason=%r",
            record.event_name, record.listener.name, reason, exc_info=exc_info,
        )

    # -------------------- Subscription --------------------
    def subscribe(self, event_name: EventKey, callback: Listener, *, bind: bool = False) -> None:
        """Register callback for event_name. With bind=True it gets the emitter as first argument."""
        self._add(event_name, callback, bind)

    def subscribe_error(self, callback: Listener, *, bind: bool = False) -> None:
        """Register callback on the error channel; it is called with one ErrorRecord."""
        self._add(ERROR_CHANNEL, callback, bind)

    def _add(self, event_name: EventKey, callback: Listener, bind: bool) -> None:
        bound = functools.partial(callback, self) if bind else callback
        entry = ListenerEntry(event_name=event_name, callback=callback, bound=bound)
        found = self._listeners.setdefault(event_name, [])
        found.append(entry)
        self.l.debug("subscribed event=%s fn=%s", event_name, entry.name)
        set_gauge("emitter_subscribers", float(len(found)), event=str(event_name))

    def on(self, event_name: EventKey, callback: Listener, *, bind: bool = False) -> None:
        """Earlier name of subscribe()."""
        self.subscribe(event_name, callback, bind=bind)

    def listener_count(self, event_name: EventKey) -> int:
        found = self._listeners.get(event_name)
        return 0 if found is None else len(found)

    def event_names(self) -> List[EventKey]:
        return [k for k, v in self._listeners.items() if v and k is not ERROR_CHANNEL]

    # -------------------- Dispatch --------------------
    async def dispatch(self, event_name: EventKey, *args: Any) -> None:
        found = self._listeners.get(event_name)
        if not found:
            return

        # later subscriptions must not leak into this dispatch
        listeners = tuple(found)
        inc_counter("emitter_dispatch_total", event=str(event_name))
        token = _current.set(self)
        t0 = time.perf_counter()
        try:
            results: List[Any] = [None] * len(listeners)
            pending = False
            i = 0
            try:
                for i, entry in enumerate(listeners):
                    results[i] = entry.bound(*args)
                    pending = pending or inspect.isawaitable(results[i])
            except Exception as exc:
                await self._escalate(listeners[i], exc)
                if await self._dispatch_rest(listeners, i + 1, args, results):
                    pending = True

            if pending:
                await self._settle(listeners, results)
        finally:
            _current.reset(token)
            observe_hist("emitter_dispatch_ms", (time.perf_counter() - t0) * 1000.0, event=str(event_name))

    async def emit_async(self, event_name: EventKey, *args: Any) -> None:
        """Earlier name of dispatch()."""
        await self.dispatch(event_name, *args)

    async def _dispatch_rest(
        self,
        listeners: Sequence[ListenerEntry],
        start: int,
        args: Tuple[Any, ...],
        results: List[Any],
    ) -> bool:
        """Invoke listeners[start:] one at a time, escalating each raise. Returns the pending flag."""
        pending = False
        for i in range(start, len(listeners)):
            try:
                results[i] = listeners[i].bound(*args)
                pending = pending or inspect.isawaitable(results[i])
            except Exception as exc:
                await self._escalate(listeners[i], exc)
        return pending

    async def _settle(self, listeners: Sequence[ListenerEntry], results: List[Any]) -> None:
        for entry, result in zip(listeners, results):
            if not inspect.isawaitable(result):
                continue
            try:
                await result
            except Exception as exc:
                await self._escalate(entry, exc)

    # -------------------- Error escalation --------------------
    async def _escalate(self, entry: ListenerEntry, reason: BaseException) -> None:
        record = ErrorRecord(listener=entry, reason=reason)
        if entry.is_error_listener:
            # an error listener is never handed its own failure
            await self._report_unhandled(record)
            return

        inc_counter("emitter_listener_errors_total", event=str(entry.event_name))
        self.l.debug("listener failed event=%s fn=%s err=%r", entry.event_name, entry.name, reason)

        handlers = self._listeners.get(ERROR_CHANNEL)
        if not handlers:
            await self._report_unhandled(record)
            return

        for handler in tuple(handlers):
            try:
                result = handler.bound(record)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                # never back into the error channel
                await self._report_unhandled(ErrorRecord(listener=handler, reason=exc))

    async def _report_unhandled(self, record: ErrorRecord) -> None:
        inc_counter("emitter_unhandled_errors_total", event=str(record.event_name))
        try:
            result = self.on_unhandled_error(record)
            if inspect.isawaitable(result):
                await result
        except Exception:
            self.l.exception(
                "on_unhandled_error failed event=%s listener=%s", record.event_name, record.listener.name
            )
