"""
Observer primitives: every on_did_x subscription returns a Disposable.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Disposable:
    """Runs a teardown callback at most once."""

    def __init__(self, callback: Optional[Callable[[], None]] = None):
        self._callback = callback
        self.disposed = False

    def dispose(self):
        if self.disposed:
            return
        self.disposed = True
        if self._callback is not None:
            self._callback()
            self._callback = None


class CompositeDisposable:
    """A bag of disposables released together."""

    def __init__(self, *disposables: Disposable):
        self._disposables: list[Disposable] = list(disposables)
        self.disposed = False

    def add(self, *disposables: Disposable):
        if self.disposed:
            for disposable in disposables:
                disposable.dispose()
            return
        self._disposables.extend(disposables)

    def dispose(self):
        if self.disposed:
            return
        self.disposed = True
        disposables, self._disposables = self._disposables, []
        for disposable in disposables:
            disposable.dispose()


class Emitter:
    """
    Named-event pub/sub.

    Listener exceptions are logged and do not interrupt delivery to the
    remaining listeners or the operation that emitted the event.
    """

    def __init__(self):
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self.disposed = False

    def on(self, event: str, callback: Callable[..., Any]) -> Disposable:
        if self.disposed:
            raise RuntimeError("Emitter has been disposed")
        self._handlers[event].append(callback)
        return Disposable(lambda: self._remove(event, callback))

    def _remove(self, event: str, callback: Callable[..., Any]):
        handlers = self._handlers.get(event)
        if handlers and callback in handlers:
            handlers.remove(callback)

    def emit(self, event: str, *args: Any):
        if self.disposed:
            return
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(*args)
            except Exception:
                logger.exception("Listener for %r failed", event)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    def dispose(self):
        self._handlers.clear()
        self.disposed = True
