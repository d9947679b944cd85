"""Ordered callback fan-out with per-registration unsubscribe handles.

Each subscribe() call creates an independent registration, even for a
callable that is already registered, and returns the function that removes
exactly that registration. Delivery is synchronous and in registration
order; a callback that raises is logged and does not stop delivery to the
callbacks after it.

Usage:
    from btcdash.pricefeed.emitter import Emitter

    prices: Emitter[float] = Emitter("price")
    unsubscribe = prices.subscribe(lambda price: print(price))
    prices.emit(65000.12)
    unsubscribe()
"""

from __future__ import annotations

import itertools
from collections.abc import Callable
from typing import Generic, TypeVar

from btcdash.common.logging import get_logger

logger = get_logger("PRICE")

T = TypeVar("T")


class Emitter(Generic[T]):
    """Registration-ordered set of callbacks receiving values of type T.

    Args:
        name: Label used in log lines when a callback raises.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: dict[int, Callable[[T], object]] = {}
        self._ids = itertools.count()

    def subscribe(self, callback: Callable[[T], object]) -> Callable[[], None]:
        """Register a callback and return its unsubscribe function.

        Calling the returned function more than once is harmless.
        """
        registration = next(self._ids)
        self._callbacks[registration] = callback

        def unsubscribe() -> None:
            self._callbacks.pop(registration, None)

        return unsubscribe

    def emit(self, value: T) -> None:
        """Deliver a value to every registered callback, in registration order."""
        # Snapshot so callbacks may subscribe/unsubscribe during delivery
        for callback in list(self._callbacks.values()):
            try:
                callback(value)
            except Exception:
                logger.exception(
                    "Subscriber callback raised",
                    extra={"data": {"emitter": self.name}},
                )

    def clear(self) -> None:
        """Drop every registration."""
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)
