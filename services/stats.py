"""Reading statistics derived from a user's shelf entries.

Everything here is a pure function of its inputs: the caller supplies the
entries, the clock reading, the activity days and the ratings. Nothing is
read from the database or the system clock.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

import pandas as pd

from models import Shelf
from services.progress import format_average_rating, format_percentage
from services.progress import goal_progress as compute_goal_progress

UNCATEGORIZED = "Uncategorized"

_COLUMNS = ["shelf", "finished_at", "pages", "genre"]


@dataclass(frozen=True)
class ReadingStatsSnapshot:
    books_read_this_year: int
    total_pages: int
    genre_breakdown: Dict[str, int]
    monthly_reading: List[int]
    reading_streak: int
    average_rating: str
    total_books_read: int
    currently_reading: int
    want_to_read: int
    favorite_genre: Optional[str]
    goal_target: Optional[int] = None
    goal_progress: Optional[float] = None
    goal_achieved: bool = False
    generated_at: Optional[datetime] = field(default=None, compare=False)

    @property
    def goal_progress_display(self) -> Optional[str]:
        if self.goal_progress is None:
            return None
        return format_percentage(self.goal_progress)

    def to_dict(self) -> dict:
        return {
            "booksReadThisYear": self.books_read_this_year,
            "totalPages": self.total_pages,
            "averageRating": self.average_rating,
            "readingStreak": self.reading_streak,
            "favoriteGenre": self.favorite_genre,
            "genreBreakdown": dict(self.genre_breakdown),
            "monthlyReading": list(self.monthly_reading),
            "totalBooksRead": self.total_books_read,
            "currentlyReading": self.currently_reading,
            "wantToRead": self.want_to_read,
            "goal": None if self.goal_target is None else {
                "targetBooks": self.goal_target,
                "progress": self.goal_progress,
                "achieved": self.goal_achieved,
            },
        }


def entries_frame(entries) -> pd.DataFrame:
    rows = []
    for entry in entries:
        book = entry.book
        rows.append({
            "shelf": entry.shelf.value,
            "finished_at": entry.finished_at,
            "pages": int(book.total_pages or 0),
            "genre": book.genre.name if book.genre is not None else UNCATEGORIZED,
        })
    df = pd.DataFrame(rows, columns=_COLUMNS)
    df["finished_at"] = pd.to_datetime(df["finished_at"])
    df["pages"] = df["pages"].astype("int64")
    return df


def reading_streak(activity_days: Iterable[date], today: date) -> int:
    days = set(activity_days)
    streak = 0
    day = today
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def genre_breakdown(read: pd.DataFrame) -> Dict[str, int]:
    counts = read["genre"].value_counts()
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return {name: int(n) for name, n in ordered}


def compute_reading_stats(
    entries,
    now: datetime,
    activity_days: Iterable[date] = (),
    ratings: Iterable[int] = (),
    goal=None,
) -> ReadingStatsSnapshot:
    """Aggregate shelf entries into dashboard statistics.

    ``goal`` is anything with a ``target_books`` attribute, or None to skip
    goal tracking. A non-positive target raises InvalidGoalError.
    """
    df = entries_frame(entries)
    read = df[df["shelf"] == Shelf.READ.value]

    this_year = read[read["finished_at"].dt.year == now.year]
    by_month = this_year["finished_at"].dt.month.value_counts()
    monthly = [int(by_month.get(month, 0)) for month in range(1, 13)]

    breakdown = genre_breakdown(read)
    shelf_counts = df["shelf"].value_counts()
    books_read_this_year = int(len(this_year))

    target = progress = None
    achieved = False
    if goal is not None:
        target = goal.target_books
        progress = compute_goal_progress(books_read_this_year, target)
        achieved = progress >= 100

    return ReadingStatsSnapshot(
        books_read_this_year=books_read_this_year,
        total_pages=int(read["pages"].sum()),
        genre_breakdown=breakdown,
        monthly_reading=monthly,
        reading_streak=reading_streak(activity_days, now.date()),
        average_rating=format_average_rating(list(ratings)),
        total_books_read=int(len(read)),
        currently_reading=int(shelf_counts.get(Shelf.CURRENTLY_READING.value, 0)),
        want_to_read=int(shelf_counts.get(Shelf.WANT_TO_READ.value, 0)),
        favorite_genre=next(iter(breakdown), None),
        goal_target=target,
        goal_progress=progress,
        goal_achieved=achieved,
        generated_at=now,
    )
