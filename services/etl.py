import io
import logging
from datetime import datetime

import pandas as pd

from models import Shelf, ReviewStatus
from services.errors import ErrorKind

logger = logging.getLogger(__name__)

# columns Goodreads puts in the standard export
REQUIRED = [
    "Title", "Author", "My Rating", "Number of Pages",
    "Original Publication Year", "Exclusive Shelf", "Date Read"
]

GOODREADS_SHELVES = {
    "to-read": Shelf.WANT_TO_READ,
    "currently-reading": Shelf.CURRENTLY_READING,
    "read": Shelf.READ,
}

def _to_int(x):
    try:
        if x is None:
            return None
        if isinstance(x, (int, float)):
            if pd.isna(x):
                return None
            v = int(float(x))
            return v if v != 0 else None
        # strings like "384.0" or "1,024"
        s = str(x).strip()
        if not s or s.lower() == "nan":
            return None
        s = s.replace(",", "")
        v = int(float(s))
        return v if v != 0 else None
    except (TypeError, ValueError):
        return None

def _to_rating(x):
    # Goodreads 'My Rating' where 0 means unrated
    v = _to_int(x)
    return v if (v is not None and 1 <= v <= 5) else None

def _to_text(x):
    return str(x).strip() if pd.notna(x) else ""

def _to_datetime(s):
    if s is None or (not isinstance(s, str) and pd.isna(s)):
        return None
    s = str(s).strip()
    if not s:
        return None
    for fmt in ("%Y/%m/%d", "%Y-%m-%d", "%m/%d/%Y"):
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    return None

def import_goodreads_csv(file_bytes: bytes, library, user_id: str = "me") -> dict:
    # Read the Goodreads export CSV and shelve every row through the engine
    df = pd.read_csv(io.BytesIO(file_bytes))
    missing = [c for c in REQUIRED if c not in df.columns]
    if missing:
        return {"ok": False, "error": f"missing columns: {missing}"}

    catalog, store = library.catalog, library.store
    has_genre = "Genre" in df.columns

    shelved = 0
    duplicates = 0
    ratings = 0
    skipped = 0

    for _, row in df.iterrows():
        title  = _to_text(row["Title"])
        author = _to_text(row["Author"])
        shelf  = GOODREADS_SHELVES.get(_to_text(row["Exclusive Shelf"]).lower())
        if not title or not author or shelf is None:
            skipped += 1
            continue

        book = catalog.get_or_create_book(
            title=title,
            author=author,
            total_pages=_to_int(row["Number of Pages"]),
            year=_to_int(row["Original Publication Year"]),
            genre=_to_text(row["Genre"]) if has_genre else None,
        )

        finished = _to_datetime(row.get("Date Read")) if shelf == Shelf.READ else None
        # no Date Read means no finish time, not a finish today
        undated = shelf == Shelf.READ and finished is None
        result = library.add_to_shelf(user_id, book.id, shelf, occurred_at=finished, undated=undated)
        if not result.ok:
            if result.error.kind == ErrorKind.DUPLICATE_ENTRY:
                duplicates += 1
            else:
                logger.warning("skipping %r by %r: %s", title, author, result.error.message)
                skipped += 1
            continue
        shelved += 1

        rating = _to_rating(row["My Rating"])
        if rating is not None:
            catalog.record_rating(book, rating)
            store.add_review(user_id, book.id, rating, status=ReviewStatus.APPROVED)
            ratings += 1

    store.db.commit()
    logger.info("goodreads import for %r: %d shelved, %d duplicates, %d skipped",
                user_id, shelved, duplicates, skipped)
    return {
        "ok": True,
        "shelved": shelved,
        "duplicates": duplicates,
        "ratings": ratings,
        "skipped": skipped,
        "total_rows": int(len(df)),
    }
