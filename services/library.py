"""Library state engine: shelf transitions, progress and reading statistics.

Callers pass ``user_id`` explicitly; nothing is read from ambient session
state. Every public operation returns a :class:`services.errors.Result` and
never lets a library or storage exception escape.
"""

import functools
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import Settings, get_settings
from models import ReadingGoal, Shelf, ShelfEntry
from services.activity import ActivityLog
from services.catalog import CatalogRepository
from services.errors import (
    DuplicateEntryError, ErrorKind, InvalidEntryError, InvalidGoalError,
    LibraryError, NotFoundError, Result, StorageError,
)
from services.events import EventBus, ProgressUpdated, ShelfChanged
from services.progress import clamp_pages, compute_percentage
from services.recommend import recommend_to_read
from services.stats import compute_reading_stats
from services.storage import LibraryStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def boundary(operation: str):
    """Turn library and storage exceptions into a failed Result."""
    def decorate(fn):
        @functools.wraps(fn)
        def wrapper(self, *args, **kwargs):
            try:
                return Result.success(fn(self, *args, **kwargs))
            except LibraryError as e:
                logger.info("%s failed (%s): %s", operation, e.kind.value, e)
                return Result.failure(e, operation)
            except SQLAlchemyError as e:
                self.store.db.rollback()
                logger.exception("%s hit a storage error", operation)
                return Result.failure(StorageError(str(e)), operation)
        return wrapper
    return decorate


def parse_shelf(value) -> Shelf:
    if isinstance(value, Shelf):
        return value
    try:
        return Shelf(value)
    except ValueError:
        raise InvalidEntryError(f"unknown shelf {value!r}",
                                user_message="Please select a shelf") from None


class LibraryEngine:
    def __init__(
        self,
        catalog: CatalogRepository,
        store: LibraryStore,
        activity: ActivityLog,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utcnow,
        settings: Optional[Settings] = None,
    ):
        self.catalog = catalog
        self.store = store
        self.activity = activity
        self.bus = bus or EventBus()
        self.clock = clock
        self.settings = settings or get_settings()

    # -- shelf transitions -------------------------------------------------

    @boundary("add_to_shelf")
    def add_to_shelf(self, user_id: str, book_id: int, shelf, initial_pages_read: int = 0,
                     occurred_at: Optional[datetime] = None, undated: bool = False) -> ShelfEntry:
        """Shelve a book for the first time.

        ``occurred_at`` backdates the entry. ``undated`` is for history with no
        known finish date: a Read entry keeps ``finished_at`` unset.
        """
        shelf = parse_shelf(shelf)
        book = self.catalog.get_book(book_id)
        if self.store.find_entry(user_id, book_id) is not None:
            raise DuplicateEntryError(f"user {user_id!r} already has book {book_id} on a shelf")

        now = occurred_at or self.clock()
        entry = ShelfEntry(
            user_id=user_id,
            book_id=book.id,
            shelf=shelf,
            pages_read=self._clamp(None, initial_pages_read, book.total_pages),
            created_at=now,
            updated_at=now,
        )
        entry.book = book
        if shelf == Shelf.CURRENTLY_READING:
            entry.started_at = now
        elif shelf == Shelf.READ:
            entry.pages_read = book.total_pages
            entry.finished_at = None if undated else now

        self.catalog.increment_shelved(book)
        self.store.insert_entry(entry)
        logger.info("user %r shelved book %s on %s", user_id, book.id, shelf.value)
        self.bus.publish(ShelfChanged(
            user_id=user_id, entry_id=entry.id, book_id=book.id,
            previous=None, shelf=shelf, occurred_at=now, undated=undated,
        ))
        return entry

    @boundary("change_shelf")
    def change_shelf(self, entry_id: int, new_shelf) -> ShelfEntry:
        new_shelf = parse_shelf(new_shelf)
        entry = self._resolve(entry_id)
        total = entry.book.total_pages
        now = self.clock()

        if entry.shelf == new_shelf:
            # same shelf: timestamps stay put; only a finished book with missing pages is repaired
            if new_shelf == Shelf.READ and entry.pages_read < total:
                self.store.update_entry(entry.id, {"pages_read": total, "updated_at": now})
                self._progress_event(entry, now)
            return entry

        previous = entry.shelf
        patch = {"shelf": new_shelf, "updated_at": now}
        if new_shelf == Shelf.CURRENTLY_READING:
            if entry.started_at is None:
                patch["started_at"] = now
        elif new_shelf == Shelf.READ:
            patch["pages_read"] = total
            patch["finished_at"] = now

        self.store.update_entry(entry.id, patch)
        logger.info("entry %s moved %s -> %s", entry.id, previous.value, new_shelf.value)
        self.bus.publish(ShelfChanged(
            user_id=entry.user_id, entry_id=entry.id, book_id=entry.book_id,
            previous=previous, shelf=new_shelf, occurred_at=now,
        ))
        return entry

    @boundary("update_progress")
    def update_progress(self, entry_id: int, pages_read: int) -> ShelfEntry:
        entry = self._resolve(entry_id)
        now = self.clock()
        pages = self._clamp(entry.id, pages_read, entry.book.total_pages)
        self.store.update_entry(entry.id, {"pages_read": pages, "updated_at": now})
        self._progress_event(entry, now)
        return entry

    @boundary("update_notes")
    def update_notes(self, entry_id: int, notes: Optional[str]) -> ShelfEntry:
        entry = self._resolve(entry_id)
        notes = (notes or "").strip() or None
        return self.store.update_entry(entry.id, {"notes": notes, "updated_at": self.clock()})

    @boundary("get_library")
    def get_library(self, user_id: str) -> Dict[Shelf, List[ShelfEntry]]:
        library = {shelf: [] for shelf in Shelf}
        for entry in self.store.list_entries(user_id):
            library[entry.shelf].append(entry)
        return library

    # -- goals -------------------------------------------------------------

    @boundary("set_reading_goal")
    def set_reading_goal(self, user_id: str, year: int, target_books: int) -> ReadingGoal:
        if target_books is None or target_books <= 0:
            raise InvalidGoalError(f"target_books must be positive, got {target_books!r}")
        return self.store.upsert_goal(user_id, year, target_books)

    @boundary("get_reading_goal")
    def get_reading_goal(self, user_id: str, year: int) -> ReadingGoal:
        return self._goal_for(user_id, year)

    # -- read model --------------------------------------------------------

    @boundary("reading_stats")
    def reading_stats(self, user_id: str, now: datetime):
        return self._stats(user_id, now, self._goal_for(user_id, now.year))

    @boundary("reading_stats")
    def reading_stats_without_goal(self, user_id: str, now: datetime):
        """Raw counts only; the dashboard fallback when the goal is unusable."""
        return self._stats(user_id, now, None)

    @boundary("recommendations")
    def recommendations(self, user_id: str, limit: int = 10):
        return recommend_to_read(
            self.store.list_entries(user_id),
            self.store.list_rated_books(user_id),
            limit=limit,
        )

    # -- helpers -----------------------------------------------------------

    def _stats(self, user_id: str, now: datetime, goal):
        since = now.date() - timedelta(days=self.settings.streak_lookback_days)
        return compute_reading_stats(
            self.store.list_entries(user_id),
            now=now,
            activity_days=self.activity.list_activity_days(user_id, since),
            ratings=self.store.list_ratings(user_id),
            goal=goal,
        )

    def _goal_for(self, user_id: str, year: int) -> ReadingGoal:
        try:
            return self.store.get_goal(user_id, year)
        except NotFoundError:
            # unsaved default; never added to the session
            return ReadingGoal(user_id=user_id, year=year,
                               target_books=self.settings.default_goal_target)

    def _resolve(self, entry_id: int) -> ShelfEntry:
        try:
            return self.store.get_entry(entry_id)
        except NotFoundError as e:
            raise InvalidEntryError(str(e)) from e

    def _clamp(self, entry_id, pages_read: int, total_pages: int) -> int:
        pages, clamped = clamp_pages(pages_read, total_pages)
        if clamped:
            logger.warning(
                "%s: pages_read %s outside [0, %s] for entry %s; stored %s",
                ErrorKind.OUT_OF_RANGE.value, pages_read, total_pages, entry_id, pages,
            )
        return pages

    def _progress_event(self, entry: ShelfEntry, now: datetime) -> None:
        self.bus.publish(ProgressUpdated(
            user_id=entry.user_id, entry_id=entry.id, book_id=entry.book_id,
            pages_read=entry.pages_read,
            percentage=compute_percentage(entry.pages_read, entry.book.total_pages),
            occurred_at=now,
        ))


def create_library(db: Session, settings: Optional[Settings] = None,
                   clock: Callable[[], datetime] = utcnow) -> LibraryEngine:
    """Wire the engine and its collaborators onto one session."""
    bus = EventBus()
    activity = ActivityLog(db).attach(bus)
    return LibraryEngine(
        catalog=CatalogRepository(db),
        store=LibraryStore(db),
        activity=activity,
        bus=bus,
        clock=clock,
        settings=settings,
    )
