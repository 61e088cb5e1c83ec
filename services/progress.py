"""Pure progress and goal arithmetic shared by the engine and the dashboards."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Tuple

from services.errors import InvalidEntryError, InvalidGoalError

UNRATED = "N/A"

SHELF_LABELS = {
    "wantToRead": "Want to Read",
    "currentlyReading": "Currently Reading",
    "read": "Read",
}


def round_half_up(value: float, places: int = 0) -> Decimal:
    # Python's round() is banker's rounding; 2.5 must become 3 here
    quantum = Decimal(1).scaleb(-places)
    return Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)


def parse_pages(value) -> int:
    """Whole page count from an int, an integral float or a numeric string."""
    bad = InvalidEntryError(f"pages_read must be a whole number, got {value!r}",
                            user_message="Pages read must be a whole number")
    if value is None or isinstance(value, bool):
        raise bad
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise bad from None
    if not number.is_finite() or number != number.to_integral_value():
        raise bad
    return int(number)


def clamp_pages(pages_read, total_pages: int) -> Tuple[int, bool]:
    """Clamp into [0, total_pages]; second item tells whether clamping happened."""
    pages = parse_pages(pages_read)
    upper = max(int(total_pages or 0), 0)
    clamped = min(max(pages, 0), upper)
    return clamped, clamped != pages


def progress_ratio(pages_read: int, total_pages: int) -> float:
    if not total_pages or total_pages <= 0:
        return 0.0
    return min(max(pages_read / total_pages * 100, 0.0), 100.0)


def compute_percentage(pages_read: int, total_pages: int) -> int:
    return int(round_half_up(progress_ratio(pages_read, total_pages)))


def goal_progress(books_read: int, target_books: int) -> float:
    """Unrounded goal percentage, capped at 100."""
    if target_books is None or target_books <= 0:
        raise InvalidGoalError(f"target_books must be positive, got {target_books!r}")
    return min(books_read / target_books * 100, 100.0)


def format_percentage(value: float) -> str:
    return f"{round_half_up(value)}%"


def format_average_rating(ratings) -> str:
    ratings = [r for r in ratings if r is not None]
    if not ratings:
        return UNRATED
    return str(round_half_up(sum(ratings) / len(ratings), 1))


def shelf_label(shelf) -> str:
    value = getattr(shelf, "value", shelf)
    return SHELF_LABELS.get(value, value)
