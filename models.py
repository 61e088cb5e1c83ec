import enum

from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, Text, Enum, ForeignKey,
    UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base
from services.progress import compute_percentage


class Shelf(str, enum.Enum):
    WANT_TO_READ = "wantToRead"
    CURRENTLY_READING = "currentlyReading"
    READ = "read"


class ReviewStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ActivityType(str, enum.Enum):
    ADDED_TO_SHELF = "added-to-shelf"
    STARTED_READING = "started-reading"
    FINISHED_BOOK = "finished-book"
    PROGRESS_UPDATED = "progress-updated"


def _values(enum_cls):
    return [member.value for member in enum_cls]


class Genre(Base):
    __tablename__ = "genres"
    id   = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    slug = Column(String, nullable=False, unique=True)
    description = Column(Text)

    books = relationship("Book", back_populates="genre")


class Book(Base):
    __tablename__ = "books"
    id       = Column(Integer, primary_key=True, autoincrement=True)
    title    = Column(String, nullable=False, index=True)
    author   = Column(String, nullable=False, index=True)
    genre_id = Column(Integer, ForeignKey("genres.id"))
    total_pages      = Column(Integer, nullable=False, default=0)
    publication_year = Column(Integer)
    isbn             = Column(String)
    average_rating = Column(Float, nullable=False, default=0.0)
    total_ratings  = Column(Integer, nullable=False, default=0)
    total_shelved  = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())
    __table_args__ = (
        UniqueConstraint("title", "author", name="uq_title_author"),
        CheckConstraint("total_pages >= 0", name="ck_total_pages_non_negative"),
    )

    genre = relationship("Genre", back_populates="books", lazy="joined")


class ShelfEntry(Base):
    """One user's shelf state and progress for one book."""

    __tablename__ = "user_books"
    id      = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    shelf   = Column(Enum(Shelf, values_callable=_values, name="shelf"), nullable=False)
    pages_read  = Column(Integer, nullable=False, default=0)
    started_at  = Column(DateTime)
    finished_at = Column(DateTime)
    notes       = Column(Text)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    # one entry per (user, book); the database is what makes add-to-shelf race free
    __table_args__ = (UniqueConstraint("user_id", "book_id", name="uq_user_book"),)

    book = relationship("Book", lazy="joined")

    @property
    def percentage(self) -> int:
        return compute_percentage(self.pages_read, self.book.total_pages)

    def __repr__(self):
        return (
            f"<ShelfEntry(id={self.id}, user_id={self.user_id!r}, book_id={self.book_id}, "
            f"shelf={self.shelf.value}, pages_read={self.pages_read})>"
        )


class ReadingGoal(Base):
    __tablename__ = "reading_goals"
    id      = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False)
    year    = Column(Integer, nullable=False)
    target_books = Column(Integer, nullable=False, default=12)
    __table_args__ = (UniqueConstraint("user_id", "year", name="uq_user_year"),)


class Review(Base):
    __tablename__ = "reviews"
    id      = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    rating  = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False, default="")
    status  = Column(
        Enum(ReviewStatus, values_callable=_values, name="review_status"),
        nullable=False,
        default=ReviewStatus.PENDING,
    )
    created_at = Column(DateTime, server_default=func.now())
    __table_args__ = (CheckConstraint("rating BETWEEN 1 AND 5", name="ck_rating_range"),)


class Activity(Base):
    __tablename__ = "activities"
    id      = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    type    = Column(Enum(ActivityType, values_callable=_values, name="activity_type"), nullable=False)
    shelf   = Column(Enum(Shelf, values_callable=_values, name="shelf"))
    day     = Column(Date, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
