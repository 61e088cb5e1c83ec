import logging
import re
from typing import Optional

from sqlalchemy.orm import Session

from models import Book, Genre
from services.errors import NotFoundError

logger = logging.getLogger(__name__)


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


class CatalogRepository:
    """Read access to books, plus the get-or-create helpers the importer needs."""

    def __init__(self, db: Session):
        self.db = db

    def get_book(self, book_id: int) -> Book:
        book = self.db.get(Book, book_id)
        if book is None:
            raise NotFoundError(f"book {book_id} not found")
        return book

    def get_or_create_genre(self, name: str) -> Genre:
        # "Sci-Fi", "sci fi" and "SCI-FI" are one genre; the slug is the identity
        name = name.strip()
        slug = slugify(name)
        genre = self.db.query(Genre).filter_by(slug=slug).first()
        if not genre:
            genre = Genre(name=name, slug=slug)
            self.db.add(genre)
            self.db.flush()
        return genre

    def get_or_create_book(self, title: str, author: str, total_pages: Optional[int] = None,
                           year: Optional[int] = None, genre: Optional[str] = None) -> Book:
        book = self.db.query(Book).filter_by(title=title, author=author).first()
        if not book:
            book = Book(title=title, author=author, total_pages=total_pages or 0,
                        publication_year=year)
            if genre:
                book.genre = self.get_or_create_genre(genre)
            self.db.add(book)
            self.db.flush()
            logger.debug("created book %s (%r by %r)", book.id, title, author)
        else:
            # fill gaps only, never overwrite catalog data
            if total_pages and not book.total_pages:
                book.total_pages = total_pages
            if year and not book.publication_year:
                book.publication_year = year
            if genre and book.genre is None:
                book.genre = self.get_or_create_genre(genre)
        return book

    def increment_shelved(self, book: Book) -> None:
        book.total_shelved = (book.total_shelved or 0) + 1

    def record_rating(self, book: Book, rating: int) -> None:
        total = (book.average_rating or 0.0) * (book.total_ratings or 0) + rating
        book.total_ratings = (book.total_ratings or 0) + 1
        book.average_rating = total / book.total_ratings
