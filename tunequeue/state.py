"""
State containers for tunequeue.
"""
from dataclasses import dataclass
from typing import Generic, Iterable, Optional, Tuple, TypeVar

from .logging_config import get_logger

logger = get_logger('state')

T = TypeVar("T")


class SelectionList(Generic[T]):
    """A single highlighted position over an ordered sequence.

    The selection is ``None`` exactly when the sequence is empty; otherwise
    it always indexes a valid item. Moving past either end wraps around.
    """

    def __init__(self, items: Iterable[T] = ()):
        self._items: Tuple[T, ...] = tuple(items)
        self._selected: Optional[int] = 0 if self._items else None

    @classmethod
    def with_items(cls, items: Iterable[T]) -> "SelectionList[T]":
        return cls(items)

    @property
    def items(self) -> Tuple[T, ...]:
        return self._items

    @property
    def selected_index(self) -> Optional[int]:
        return self._selected

    def __len__(self) -> int:
        return len(self._items)

    def next(self) -> None:
        """Advance the selection, wrapping from the last item to the first."""
        if self._selected is None:
            return
        self._selected = (self._selected + 1) % len(self._items)
        logger.debug(f"Selection moved to {self._selected}")

    def previous(self) -> None:
        """Move the selection back, wrapping from the first item to the last."""
        if self._selected is None:
            return
        self._selected = (self._selected - 1) % len(self._items)
        logger.debug(f"Selection moved to {self._selected}")

    def selected(self) -> Optional[T]:
        if self._selected is None:
            return None
        return self._items[self._selected]


@dataclass(frozen=True)
class PlayerView:
    """Read-only snapshot handed to the display once per tick."""

    catalog: Tuple[str, ...]
    selected_index: Optional[int]
    queue: Tuple[str, ...]
    now_playing: Optional[str]
    looping: bool
    shuffle: bool
    paused: bool
    volume: int
    last_error: Optional[str] = None

    @property
    def status_label(self) -> str:
        """Headline status in display priority order."""
        if self.paused:
            return "Paused"
        if self.looping:
            return "Looping"
        if self.shuffle:
            return "Shuffling"
        return "Playing"
