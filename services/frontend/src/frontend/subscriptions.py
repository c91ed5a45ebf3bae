from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

T = TypeVar("T")
LOGGER = logging.getLogger("jobboard.frontend")


class Subscription:
    """Handle for a standing registration; release it with ``unsubscribe()``."""

    def __init__(self, release: Callable[[], None]) -> None:
        self._release: Callable[[], None] | None = release

    @property
    def active(self) -> bool:
        return self._release is not None

    def unsubscribe(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *_: object) -> None:
        self.unsubscribe()


class Listeners(Generic[T]):
    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: dict[int, Callable[[T], None]] = {}
        self._next_id = 0

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: Callable[[T], None]) -> Subscription:
        listener_id = self._next_id
        self._next_id += 1
        self._callbacks[listener_id] = callback
        return Subscription(lambda: self._callbacks.pop(listener_id, None))

    def emit(self, value: T) -> None:
        for callback in list(self._callbacks.values()):
            try:
                callback(value)
            except Exception:
                LOGGER.exception(json.dumps({"event": "listener_failed", "stream": self.name}))


class LiveValue(Generic[T]):
    """Latest value of a live subscription, kept until ``close()``."""

    def __init__(self, initial: T) -> None:
        self.value = initial
        self.error: Exception | None = None
        self._ready = asyncio.Event()
        self._subscription: Subscription | None = None
        self._listeners: Listeners[T] = Listeners("live_value")

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    @property
    def closed(self) -> bool:
        return self._subscription is not None and not self._subscription.active

    def attach(self, subscription: Subscription) -> None:
        self._subscription = subscription

    def publish(self, value: T) -> None:
        self.value = value
        self.error = None
        self._ready.set()
        self._listeners.emit(value)

    def fail(self, error: Exception) -> None:
        self.error = error
        self._ready.set()

    def add_listener(self, callback: Callable[[T], None]) -> Subscription:
        return self._listeners.add(callback)

    async def wait_ready(self, timeout: float | None = None) -> T:
        await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        return self.value

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()

    def __enter__(self) -> LiveValue[T]:
        return self

    def __exit__(self, *_: Any) -> None:
        self.close()
