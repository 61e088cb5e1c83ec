from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models
from config import Settings
from database import Base
from services.library import create_library


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def db():
    """In-memory SQLite session shared across the whole test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 14, 9, 30))


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", default_goal_target=12, streak_lookback_days=365)


@pytest.fixture
def library(db, clock, settings):
    return create_library(db, settings=settings, clock=clock)


@pytest.fixture
def events(library):
    captured = []
    library.bus.subscribe(captured.append)
    return captured


@pytest.fixture
def make_book(db):
    counter = {"n": 0}

    def _make(total_pages=300, genre="Fantasy", author="Ursula K. Le Guin",
              title=None, average_rating=0.0):
        counter["n"] += 1
        book = models.Book(
            title=title or f"Book {counter['n']}",
            author=author,
            total_pages=total_pages,
            average_rating=average_rating,
        )
        if genre:
            existing = db.query(models.Genre).filter_by(name=genre).first()
            book.genre = existing or models.Genre(name=genre, slug=genre.lower().replace(" ", "-"))
        db.add(book)
        db.commit()
        return book

    return _make
