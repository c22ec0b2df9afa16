"""Observable list state exposed to the UI layer."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[tuple[T, ...]], None]


class ObservableList(Generic[T]):
    """Immutable snapshots of a list plus change notification.

    Only the owner calls ``set``; subscribers receive every new snapshot.
    """

    def __init__(self, name: str, items: Iterable[T] = ()) -> None:
        self.name = name
        self._items: tuple[T, ...] = tuple(items)
        self._listeners: list[Listener[T]] = []

    @property
    def items(self) -> tuple[T, ...]:
        return self._items

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def subscribe(self, listener: Listener[T]) -> Callable[[], None]:
        """Register ``listener`` and return a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def set(self, items: Sequence[T]) -> None:
        """Replace the snapshot and notify subscribers."""
        self._items = tuple(items)
        for listener in list(self._listeners):
            try:
                listener(self._items)
            except Exception:
                logger.exception("Listener on %s failed", self.name)
