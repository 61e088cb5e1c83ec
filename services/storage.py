"""SQLAlchemy storage for shelf entries, reading goals and ratings.

Every write commits on success and rolls back on failure, so a failed
mutation never leaves a partial row behind.
"""

from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models import ShelfEntry, ReadingGoal, Review, ReviewStatus
from services.errors import DuplicateEntryError, NotFoundError, StorageError

# columns update_entry may touch; identity columns stay fixed
_PATCHABLE = {"shelf", "pages_read", "started_at", "finished_at", "notes", "updated_at"}


class LibraryStore:
    def __init__(self, db: Session):
        self.db = db

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"failed to {action}: {e}") from e

    def find_entry(self, user_id: str, book_id: int) -> Optional[ShelfEntry]:
        return (
            self.db.query(ShelfEntry)
              .filter_by(user_id=user_id, book_id=book_id)
              .first()
        )

    def get_entry(self, entry_id: int) -> ShelfEntry:
        entry = self.db.get(ShelfEntry, entry_id)
        if entry is None:
            raise NotFoundError(f"shelf entry {entry_id} not found")
        return entry

    def insert_entry(self, entry: ShelfEntry) -> ShelfEntry:
        self.db.add(entry)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateEntryError(
                f"user {entry.user_id!r} already has book {entry.book_id} on a shelf"
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"failed to insert shelf entry: {e}") from e
        return entry

    def update_entry(self, entry_id: int, patch: Dict) -> ShelfEntry:
        unknown = set(patch) - _PATCHABLE
        if unknown:
            raise ValueError(f"cannot patch shelf entry fields: {sorted(unknown)}")
        entry = self.get_entry(entry_id)
        for field, value in patch.items():
            setattr(entry, field, value)
        self._commit(f"update shelf entry {entry_id}")
        return entry

    def list_entries(self, user_id: str) -> List[ShelfEntry]:
        return (
            self.db.query(ShelfEntry)
              .filter(ShelfEntry.user_id == user_id)
              .order_by(ShelfEntry.created_at.desc(), ShelfEntry.id.desc())
              .all()
        )

    def get_goal(self, user_id: str, year: int) -> ReadingGoal:
        goal = self.db.query(ReadingGoal).filter_by(user_id=user_id, year=year).first()
        if goal is None:
            raise NotFoundError(f"no reading goal for {user_id!r} in {year}")
        return goal

    def upsert_goal(self, user_id: str, year: int, target_books: int) -> ReadingGoal:
        # validation of target_books belongs to the caller
        goal = self.db.query(ReadingGoal).filter_by(user_id=user_id, year=year).first()
        if goal is None:
            goal = ReadingGoal(user_id=user_id, year=year)
            self.db.add(goal)
        goal.target_books = target_books
        self._commit(f"save reading goal for {year}")
        return goal

    def list_ratings(self, user_id: str) -> List[int]:
        rows = (
            self.db.query(Review.rating)
              .filter(Review.user_id == user_id, Review.rating.isnot(None))
              .all()
        )
        return [rating for (rating,) in rows]

    def add_review(self, user_id: str, book_id: int, rating: int, comment: str = "",
                   status: ReviewStatus = ReviewStatus.PENDING) -> Review:
        review = Review(user_id=user_id, book_id=book_id, rating=rating,
                        comment=comment, status=status)
        self.db.add(review)
        self._commit("save review")
        return review

    def list_rated_books(self, user_id: str) -> Dict[int, int]:
        """book_id -> the user's most recent rating for it."""
        rows = (
            self.db.query(Review.book_id, Review.rating)
              .filter(Review.user_id == user_id)
              .order_by(Review.created_at.asc(), Review.id.asc())
              .all()
        )
        return {book_id: rating for book_id, rating in rows}
