# src/towerctx/events.py
import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    def __init__(self, dispose: Callable[[], None]):
        self._dispose = dispose
        self.active = True

    def dispose(self) -> None:
        if self.active:
            self.active = False
            self._dispose()


class EventEmitter(Generic[T]):
    """An explicit observer list. Listeners run synchronously in subscription order."""

    def __init__(self, name: str = ""):
        self.name = name
        self._listeners: List[Callable[[T], None]] = []

    def subscribe(self, listener: Callable[[T], None]) -> Subscription:
        self._listeners.append(listener)
        return Subscription(lambda: self._remove(listener))

    def _remove(self, listener: Callable[[T], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def emit(self, payload: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception:
                # Listener failures are logged, never propagated to the emitter.
                logger.exception("Listener for %s event failed", self.name or "unnamed")

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
