from collections import Counter, defaultdict
from typing import Dict

from models import Shelf
from services.stats import UNCATEGORIZED


def _clamp01(x):
    return 0.0 if x is None else max(0.0, min(1.0, float(x)))

def _norm_pages(pages, max_pages=800):
    if not pages:
        return 0.5
    p = min(max_pages, max(0, int(pages)))
    return 1.0 - (p / max_pages)

def _bayes(avg, n, prior_mean, k):
    n = float(n or 0)
    avg = float(avg or prior_mean)
    denom = n + k
    return (avg * n + prior_mean * k) / denom if denom > 0 else prior_mean

def _genre_name(book):
    return book.genre.name if book.genre is not None else UNCATEGORIZED


def build_user_profile(entries, rated: Dict[int, int], k_author: float = 2.0):
    read = [e for e in entries if e.shelf == Shelf.READ]
    read_ratings = [rated[e.book_id] for e in read if e.book_id in rated]
    global_mean = sum(read_ratings) / len(read_ratings) if read_ratings else 0.0

    by_author = defaultdict(list)
    for e in read:
        if e.book_id in rated:
            by_author[e.book.author].append(rated[e.book_id])

    author_pref = {}
    for author, ratings in by_author.items():
        n = len(ratings)
        bayes = _bayes(sum(ratings) / n, n, global_mean, k_author)  # 1..5, already accounts for n
        conf = n / (n + 2.0)
        author_pref[author] = _clamp01(bayes / 5.0 * (0.7 + 0.3 * conf))

    # share of finished books per genre, so one dominant genre scores near 1
    genre_counts = Counter(_genre_name(e.book) for e in read)
    genre_pref = {g: n / len(read) for g, n in genre_counts.items()} if read else {}

    return {
        "global_mean_norm": (global_mean / 5.0) if global_mean else 0.6,
        "author_pref": author_pref,
        "genre_pref": genre_pref,
        "genre_counts": dict(genre_counts),
    }


def _reason(book, genre_counts, a, g, r):
    genre = _genre_name(book)
    if g > 0 and g >= a:
        n = genre_counts[genre]
        return f"Because you've read {n} {genre} book{'s' if n != 1 else ''}"
    if a > 0:
        return f"You rated books by {book.author} highly"
    if r >= 0.8:
        return "Highly rated by other readers"
    return "On your Want to Read shelf"


def recommend_to_read(
    entries,
    rated: Dict[int, int],
    limit: int = 10,
    w_genre: float = 0.35,
    w_author: float = 0.30,
    w_pages: float = 0.15,
    w_rating: float = 0.20,
    k_author: float = 2.0,
):
    """Rank the user's Want to Read shelf, each pick with a human-readable reason."""
    entries = list(entries)
    profile = build_user_profile(entries, rated, k_author=k_author)
    aff = profile["author_pref"]
    genre_pref = profile["genre_pref"]

    candidates = [e for e in entries if e.shelf == Shelf.WANT_TO_READ]

    scored = []
    for entry in candidates:
        book = entry.book
        a = _clamp01(aff.get(book.author, 0.0))
        g = _clamp01(genre_pref.get(_genre_name(book), 0.0))
        p = _norm_pages(book.total_pages, max_pages=800)
        r = _clamp01((book.average_rating or 0.0) / 5.0)

        raw = w_genre * g + w_author * a + w_pages * p + w_rating * r

        scored.append({
            "book_id": book.id,
            "entry_id": entry.id,
            "title": book.title,
            "author": book.author,
            "reason": _reason(book, profile["genre_counts"], a, g, r),
            "raw_score": raw,
            "score": round(raw, 4),
            "explain": {
                "genre_affinity": round(g, 3),
                "author_affinity": round(a, 3),
                "pages_component": round(p, 3),
                "rating_component": round(r, 3),
                "weights": {"genre": w_genre, "author": w_author,
                            "pages": w_pages, "rating": w_rating},
            },
        })

    scored.sort(
        key=lambda x: (
            -x["raw_score"],
            -x["explain"]["genre_affinity"],
            -x["explain"]["pages_component"],
            (x["title"] or "").lower(),
        ),
    )

    return {"count": len(scored), "items": scored[:limit]}
