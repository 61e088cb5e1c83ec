"""Error taxonomy and the result values returned across the engine boundary."""

import enum
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "NotFound"
    DUPLICATE_ENTRY = "DuplicateEntry"
    INVALID_ENTRY = "InvalidEntry"
    INVALID_GOAL = "InvalidGoal"
    OUT_OF_RANGE = "OutOfRange"
    STORAGE_ERROR = "StorageError"


class LibraryError(Exception):
    kind = ErrorKind.STORAGE_ERROR

    def __init__(self, message: str = "", user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message


class NotFoundError(LibraryError):
    kind = ErrorKind.NOT_FOUND


class DuplicateEntryError(LibraryError):
    kind = ErrorKind.DUPLICATE_ENTRY


class InvalidEntryError(LibraryError):
    kind = ErrorKind.INVALID_ENTRY


class InvalidGoalError(LibraryError):
    kind = ErrorKind.INVALID_GOAL


class StorageError(LibraryError):
    kind = ErrorKind.STORAGE_ERROR


# user-facing text per (operation, kind); falls back to the operation default
_MESSAGES = {
    ("add_to_shelf", ErrorKind.DUPLICATE_ENTRY): "This book is already on your shelves",
    ("add_to_shelf", ErrorKind.NOT_FOUND): "Book not found",
    ("add_to_shelf", None): "Failed to add book to shelf",
    ("change_shelf", None): "Failed to update shelf",
    ("update_progress", None): "Failed to update progress",
    ("update_notes", None): "Failed to save notes",
    ("set_reading_goal", ErrorKind.INVALID_GOAL): "Reading goal must be at least one book",
    ("set_reading_goal", None): "Failed to update goal",
    ("reading_stats", ErrorKind.INVALID_GOAL): "Reading goal must be at least one book",
    ("reading_stats", None): "Failed to load dashboard data",
    ("get_library", None): "Failed to load library",
    ("get_reading_goal", None): "Failed to load reading goal",
    ("recommendations", None): "Failed to load recommendations",
}


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    operation: str = ""
    hint: Optional[str] = None

    @property
    def user_message(self) -> str:
        if self.hint:
            return self.hint
        return _MESSAGES.get(
            (self.operation, self.kind),
            _MESSAGES.get((self.operation, None), "Something went wrong"),
        )


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, exc: LibraryError, operation: str = "") -> "Result[T]":
        return cls(error=Failure(kind=exc.kind, message=str(exc), operation=operation,
                                   hint=getattr(exc, "user_message", None)))
