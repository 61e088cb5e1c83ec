"""Append-only activity log fed by domain events; answers streak queries."""

import logging
from datetime import date
from typing import Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Activity, ActivityType, Shelf
from services.events import EventBus, ProgressUpdated, ShelfChanged

logger = logging.getLogger(__name__)

_SHELF_ACTIVITY = {
    Shelf.WANT_TO_READ: ActivityType.ADDED_TO_SHELF,
    Shelf.CURRENTLY_READING: ActivityType.STARTED_READING,
    Shelf.READ: ActivityType.FINISHED_BOOK,
}

# activity types that keep a reading streak alive
STREAK_TYPES = (
    ActivityType.STARTED_READING,
    ActivityType.FINISHED_BOOK,
    ActivityType.PROGRESS_UPDATED,
)


class ActivityLog:
    def __init__(self, db: Session):
        self.db = db

    def attach(self, bus: EventBus) -> "ActivityLog":
        bus.subscribe(self.record)
        return self

    def record(self, event) -> Optional[Activity]:
        if isinstance(event, ShelfChanged) and event.undated:
            logger.debug("skipping undated shelf change for user %r", event.user_id)
            return None
        if isinstance(event, ShelfChanged):
            activity = Activity(
                user_id=event.user_id,
                book_id=event.book_id,
                type=_SHELF_ACTIVITY[event.shelf],
                shelf=event.shelf,
            )
        elif isinstance(event, ProgressUpdated):
            activity = Activity(
                user_id=event.user_id,
                book_id=event.book_id,
                type=ActivityType.PROGRESS_UPDATED,
            )
        else:
            raise TypeError(f"unsupported event {type(event).__name__}")
        activity.created_at = event.occurred_at
        activity.day = event.occurred_at.date()
        self.db.add(activity)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        logger.debug("recorded %s for user %r", activity.type.value, activity.user_id)
        return activity

    def list_activity_days(self, user_id: str, since_date: date) -> Set[date]:
        rows = (
            self.db.query(Activity.day)
              .filter(Activity.user_id == user_id,
                      Activity.day >= since_date,
                      Activity.type.in_(STREAK_TYPES))
              .distinct()
              .all()
        )
        return {day for (day,) in rows}
