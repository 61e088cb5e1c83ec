"""Tests for LibraryEngine shelf transitions, progress and goals."""

import logging
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from models import Shelf
from services.errors import ErrorKind
from services.events import ProgressUpdated, ShelfChanged


def test_reading_lifecycle_scenario(library, make_book, clock):
    book = make_book(total_pages=300)

    added = library.add_to_shelf("u1", book.id, Shelf.WANT_TO_READ)
    assert added.ok
    entry = added.value
    assert entry.pages_read == 0
    assert entry.percentage == 0
    assert entry.started_at is None

    clock.advance(days=1)
    entry = library.change_shelf(entry.id, Shelf.CURRENTLY_READING).value
    assert entry.shelf == Shelf.CURRENTLY_READING
    assert entry.started_at == clock.now

    entry = library.update_progress(entry.id, 150).value
    assert entry.percentage == 50

    clock.advance(days=3)
    entry = library.change_shelf(entry.id, Shelf.READ).value
    assert entry.pages_read == 300
    assert entry.percentage == 100
    assert entry.finished_at == clock.now


class TestAddToShelf:
    def test_second_add_is_duplicate_and_leaves_state(self, library, make_book):
        book = make_book(total_pages=200)
        first = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING, 40).value

        second = library.add_to_shelf("u1", book.id, Shelf.READ)

        assert not second.ok
        assert second.error.kind == ErrorKind.DUPLICATE_ENTRY
        assert second.error.user_message == "This book is already on your shelves"
        entries = library.store.list_entries("u1")
        assert len(entries) == 1
        assert entries[0].id == first.id
        assert entries[0].shelf == Shelf.CURRENTLY_READING
        assert entries[0].pages_read == 40

    def test_same_book_for_different_users(self, library, make_book):
        book = make_book()
        assert library.add_to_shelf("u1", book.id, Shelf.READ).ok
        assert library.add_to_shelf("u2", book.id, Shelf.READ).ok

    def test_at_most_one_entry_per_book(self, library, make_book):
        books = [make_book() for _ in range(3)]
        for book in books + books + books[:1]:
            library.add_to_shelf("u1", book.id, Shelf.WANT_TO_READ)
        book_ids = [e.book_id for e in library.store.list_entries("u1")]
        assert sorted(book_ids) == sorted(b.id for b in books)

    def test_initial_pages_are_clamped(self, library, make_book):
        book = make_book(total_pages=120)
        entry = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING, 500).value
        assert entry.pages_read == 120
        assert entry.started_at is not None

    def test_adding_to_read_completes_the_book(self, library, make_book, clock):
        book = make_book(total_pages=250)
        entry = library.add_to_shelf("u1", book.id, Shelf.READ).value
        assert entry.pages_read == 250
        assert entry.finished_at == clock.now

    def test_unknown_book(self, library):
        result = library.add_to_shelf("u1", 9999, Shelf.READ)
        assert result.error.kind == ErrorKind.NOT_FOUND

    def test_accepts_shelf_value_string(self, library, make_book):
        book = make_book()
        entry = library.add_to_shelf("u1", book.id, "currentlyReading").value
        assert entry.shelf == Shelf.CURRENTLY_READING

    def test_unknown_shelf_is_rejected(self, library, make_book):
        book = make_book()
        result = library.add_to_shelf("u1", book.id, "favourites")
        assert result.error.kind == ErrorKind.INVALID_ENTRY
        assert result.error.user_message == "Please select a shelf"
        assert library.store.list_entries("u1") == []

    def test_increments_shelved_count(self, library, make_book):
        book = make_book()
        library.add_to_shelf("u1", book.id, Shelf.WANT_TO_READ)
        library.add_to_shelf("u2", book.id, Shelf.WANT_TO_READ)
        assert library.catalog.get_book(book.id).total_shelved == 2


class TestChangeShelf:
    def test_finish_implies_completion(self, library, make_book):
        book = make_book(total_pages=410)
        entry = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING, 12).value
        entry = library.change_shelf(entry.id, Shelf.READ).value
        assert entry.pages_read == 410
        assert entry.percentage == 100

    def test_same_shelf_keeps_timestamps(self, library, make_book, clock):
        book = make_book()
        entry = library.add_to_shelf("u1", book.id, Shelf.READ).value
        started, finished = entry.started_at, entry.finished_at

        clock.advance(days=2)
        entry = library.change_shelf(entry.id, Shelf.READ).value

        assert entry.started_at == started
        assert entry.finished_at == finished

    def test_started_at_never_reset(self, library, make_book, clock):
        book = make_book()
        entry = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING).value
        first_start = entry.started_at

        clock.advance(days=10)
        library.change_shelf(entry.id, Shelf.WANT_TO_READ)
        clock.advance(days=10)
        entry = library.change_shelf(entry.id, Shelf.CURRENTLY_READING).value

        assert entry.started_at == first_start

    def test_refinishing_overwrites_finished_at(self, library, make_book, clock):
        book = make_book()
        entry = library.add_to_shelf("u1", book.id, Shelf.READ).value
        first_finish = entry.finished_at

        clock.advance(days=30)
        library.change_shelf(entry.id, Shelf.WANT_TO_READ)
        clock.advance(days=30)
        entry = library.change_shelf(entry.id, Shelf.READ).value

        assert entry.finished_at == clock.now
        assert entry.finished_at != first_finish

    def test_unknown_entry(self, library):
        result = library.change_shelf(404, Shelf.READ)
        assert result.error.kind == ErrorKind.INVALID_ENTRY
        assert result.error.user_message == "Failed to update shelf"


class TestUpdateProgress:
    def test_negative_pages_clamp_to_zero(self, library, make_book):
        book = make_book(total_pages=200)
        entry = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING, 20).value
        entry = library.update_progress(entry.id, -5).value
        assert entry.pages_read == 0
        assert entry.percentage == 0

    def test_excess_pages_clamp_to_total(self, library, make_book):
        book = make_book(total_pages=200)
        entry = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING).value
        entry = library.update_progress(entry.id, 999).value
        assert entry.pages_read == 200
        assert entry.percentage == 100

    def test_clamping_is_logged(self, library, make_book, caplog):
        book = make_book(total_pages=200)
        entry = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING).value
        with caplog.at_level(logging.WARNING, logger="services.library"):
            library.update_progress(entry.id, 999)
        assert "OutOfRange" in caplog.text

    def test_zero_page_book(self, library, make_book):
        book = make_book(total_pages=0)
        entry = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING).value
        entry = library.update_progress(entry.id, 10).value
        assert entry.pages_read == 0
        assert entry.percentage == 0

    def test_unknown_entry(self, library):
        result = library.update_progress(404, 10)
        assert result.error.kind == ErrorKind.INVALID_ENTRY
        assert result.error.user_message == "Failed to update progress"

    def test_storage_failure_is_returned_not_raised(self, library, make_book, monkeypatch):
        book = make_book(total_pages=200)
        entry = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING, 10).value

        def broken(*args, **kwargs):
            raise OperationalError("UPDATE user_books", {}, Exception("database is locked"))

        monkeypatch.setattr(library.store, "update_entry", broken)
        result = library.update_progress(entry.id, 50)

        assert result.error.kind == ErrorKind.STORAGE_ERROR
        monkeypatch.undo()
        assert library.store.get_entry(entry.id).pages_read == 10


class TestEvents:
    def test_one_event_per_mutation(self, library, make_book, events):
        book = make_book()
        entry = library.add_to_shelf("u1", book.id, Shelf.WANT_TO_READ).value
        library.change_shelf(entry.id, Shelf.CURRENTLY_READING)
        library.update_progress(entry.id, 30)

        assert [type(e) for e in events] == [ShelfChanged, ShelfChanged, ProgressUpdated]
        assert events[0].previous is None
        assert events[1].previous == Shelf.WANT_TO_READ
        assert events[1].shelf == Shelf.CURRENTLY_READING
        assert events[2].pages_read == 30
        assert events[2].percentage == 10

    def test_failed_mutations_raise_nothing(self, library, make_book, events):
        book = make_book()
        library.add_to_shelf("u1", book.id, Shelf.WANT_TO_READ)
        events.clear()

        library.add_to_shelf("u1", book.id, Shelf.WANT_TO_READ)
        library.update_progress(404, 1)

        assert events == []

    def test_same_shelf_is_silent(self, library, make_book, events):
        book = make_book()
        entry = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING).value
        events.clear()
        library.change_shelf(entry.id, Shelf.CURRENTLY_READING)
        assert events == []

    def test_broken_subscriber_does_not_undo_mutation(self, library, make_book):
        def explode(event):
            raise RuntimeError("feed offline")

        library.bus.subscribe(explode)
        book = make_book()
        result = library.add_to_shelf("u1", book.id, Shelf.READ)
        assert result.ok
        assert library.store.find_entry("u1", book.id) is not None


class TestNotesAndLibrary:
    def test_notes_are_trimmed_and_cleared(self, library, make_book):
        book = make_book()
        entry = library.add_to_shelf("u1", book.id, Shelf.READ).value
        assert library.update_notes(entry.id, "  loved the ending ").value.notes == "loved the ending"
        assert library.update_notes(entry.id, "").value.notes is None

    def test_library_grouped_by_shelf(self, library, make_book):
        want, reading, done = make_book(), make_book(), make_book()
        library.add_to_shelf("u1", want.id, Shelf.WANT_TO_READ)
        library.add_to_shelf("u1", reading.id, Shelf.CURRENTLY_READING)
        library.add_to_shelf("u1", done.id, Shelf.READ)
        library.add_to_shelf("u2", done.id, Shelf.WANT_TO_READ)

        grouped = library.get_library("u1").value

        assert list(grouped) == [Shelf.WANT_TO_READ, Shelf.CURRENTLY_READING, Shelf.READ]
        assert [e.book_id for e in grouped[Shelf.WANT_TO_READ]] == [want.id]
        assert [e.book_id for e in grouped[Shelf.CURRENTLY_READING]] == [reading.id]
        assert [e.book_id for e in grouped[Shelf.READ]] == [done.id]


class TestGoals:
    def test_default_goal(self, library):
        goal = library.get_reading_goal("u1", 2026).value
        assert goal.target_books == 12

    def test_set_goal(self, library):
        library.set_reading_goal("u1", 2026, 20)
        library.set_reading_goal("u1", 2026, 25)
        assert library.get_reading_goal("u1", 2026).value.target_books == 25

    def test_set_non_positive_goal(self, library):
        result = library.set_reading_goal("u1", 2026, 0)
        assert result.error.kind == ErrorKind.INVALID_GOAL
        assert result.error.user_message == "Reading goal must be at least one book"

    def test_stored_zero_goal_makes_stats_invalid(self, library, make_book):
        book = make_book()
        library.add_to_shelf("u1", book.id, Shelf.READ)
        library.store.upsert_goal("u1", 2026, 0)

        result = library.reading_stats("u1", datetime(2026, 3, 14, 12, 0))
        assert result.error.kind == ErrorKind.INVALID_GOAL

        fallback = library.reading_stats_without_goal("u1", datetime(2026, 3, 14, 12, 0))
        assert fallback.ok
        assert fallback.value.books_read_this_year == 1
        assert fallback.value.goal_progress is None


class TestReadingStats:
    def test_dashboard_numbers(self, library, make_book, clock):
        fantasy = make_book(total_pages=300, genre="Fantasy")
        scifi = make_book(total_pages=200, genre="Science Fiction")
        current = make_book(total_pages=500, genre="History")

        library.add_to_shelf("u1", fantasy.id, Shelf.READ)
        clock.advance(days=1)
        library.add_to_shelf("u1", scifi.id, Shelf.READ)
        clock.advance(days=1)
        entry = library.add_to_shelf("u1", current.id, Shelf.CURRENTLY_READING).value
        library.update_progress(entry.id, 100)
        library.store.add_review("u1", fantasy.id, 5)
        library.store.add_review("u1", scifi.id, 4)
        library.set_reading_goal("u1", 2026, 4)

        stats = library.reading_stats("u1", clock.now).value

        assert stats.books_read_this_year == 2
        assert stats.total_pages == 500
        assert stats.genre_breakdown == {"Fantasy": 1, "Science Fiction": 1}
        assert stats.monthly_reading[2] == 2
        assert sum(stats.monthly_reading) == 2
        assert stats.reading_streak == 3
        assert stats.average_rating == "4.5"
        assert stats.currently_reading == 1
        assert stats.goal_progress == 50
        assert not stats.goal_achieved

    def test_goal_achieved(self, library, make_book, clock):
        library.set_reading_goal("u1", 2026, 2)
        for _ in range(3):
            library.add_to_shelf("u1", make_book().id, Shelf.READ)
        stats = library.reading_stats("u1", clock.now).value
        assert stats.goal_progress == 100
        assert stats.goal_achieved
        assert stats.goal_progress_display == "100%"


def test_recommendations_come_from_want_to_read(library, make_book):
    liked = make_book(genre="Mystery", author="Tana French")
    library.add_to_shelf("u1", liked.id, Shelf.READ)
    library.store.add_review("u1", liked.id, 5)
    next_up = make_book(genre="Mystery", author="Tana French", title="The Searcher")
    library.add_to_shelf("u1", next_up.id, Shelf.WANT_TO_READ)

    result = library.recommendations("u1").value

    assert result["count"] == 1
    assert result["items"][0]["title"] == "The Searcher"
    assert result["items"][0]["reason"] == "Because you've read 1 Mystery book"


class TestBadPageInput:
    @pytest.mark.parametrize("pages", [None, "abc", 150.5])
    def test_update_progress_returns_failure(self, library, make_book, events, pages):
        book = make_book(total_pages=200)
        entry = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING, 20).value
        events.clear()

        result = library.update_progress(entry.id, pages)

        assert not result.ok
        assert result.error.kind == ErrorKind.INVALID_ENTRY
        assert result.error.user_message == "Pages read must be a whole number"
        assert library.store.get_entry(entry.id).pages_read == 20
        assert events == []

    def test_numeric_string_is_accepted(self, library, make_book):
        book = make_book(total_pages=200)
        entry = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING).value
        assert library.update_progress(entry.id, "50").value.percentage == 25

    def test_integral_float_is_not_logged_as_clamped(self, library, make_book, caplog):
        book = make_book(total_pages=200)
        entry = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING).value
        with caplog.at_level(logging.WARNING, logger="services.library"):
            assert library.update_progress(entry.id, 150.0).value.pages_read == 150
        assert "OutOfRange" not in caplog.text

    def test_add_to_shelf_with_bad_initial_pages(self, library, make_book):
        book = make_book()
        result = library.add_to_shelf("u1", book.id, Shelf.CURRENTLY_READING, "lots")
        assert result.error.kind == ErrorKind.INVALID_ENTRY
        assert library.store.find_entry("u1", book.id) is None


def test_undated_read_entry_has_no_finish_time(library, make_book, clock):
    book = make_book(total_pages=320)
    entry = library.add_to_shelf("u1", book.id, Shelf.READ, undated=True).value

    assert entry.pages_read == 320
    assert entry.finished_at is None
    stats = library.reading_stats("u1", clock.now).value
    assert stats.books_read_this_year == 0
    assert stats.reading_streak == 0


@pytest.mark.parametrize("operation,call,message", [
    ("recommendations", lambda lib: lib.recommendations("u1"), "Failed to load recommendations"),
    ("get_reading_goal", lambda lib: lib.get_reading_goal("u1", 2026), "Failed to load reading goal"),
])
def test_read_failures_have_specific_messages(library, monkeypatch, operation, call, message):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("no such table"))

    monkeypatch.setattr(library.store, "list_entries", broken)
    monkeypatch.setattr(library.store, "get_goal", broken)

    result = call(library)

    assert result.error.kind == ErrorKind.STORAGE_ERROR
    assert result.error.operation == operation
    assert result.error.user_message == message
