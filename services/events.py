"""Domain events raised by the library engine after each committed mutation."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Union

from models import Shelf

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShelfChanged:
    user_id: str
    entry_id: int
    book_id: int
    previous: Optional[Shelf]
    shelf: Shelf
    occurred_at: datetime
    # backfilled history with no known date; not reading activity on occurred_at
    undated: bool = False


@dataclass(frozen=True)
class ProgressUpdated:
    user_id: str
    entry_id: int
    book_id: int
    pages_read: int
    percentage: int
    occurred_at: datetime


DomainEvent = Union[ShelfChanged, ProgressUpdated]
Handler = Callable[[DomainEvent], None]


class EventBus:
    """Synchronous fan-out to subscribers; nothing is persisted here."""

    def __init__(self) -> None:
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def publish(self, event: DomainEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                # the mutation is already committed; a broken subscriber must not undo it
                logger.exception("event handler %r failed for %s", handler, type(event).__name__)
