from datetime import datetime
from typing import Iterable, Optional, Protocol
import logging

from fastapi import HTTPException, status
from sqlalchemy import update
from sqlmodel import Session, col, select

from .auth import CurrentUser
from .models import Booking, BookingCreate, BookingUpdate, Venue

logger = logging.getLogger(__name__)


class Slot(Protocol):
    id: str
    venue: str
    start_time: datetime
    end_time: datetime


def overlaps(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """Half-open intervals: touching at a boundary is not an overlap."""
    return max(start1, start2) < min(end1, end2)


def find_conflicts(candidate: Slot, existing: Iterable[Slot]) -> list[Slot]:
    return [
        other
        for other in existing
        if other.venue == candidate.venue
        and other.id != candidate.id
        and overlaps(
            candidate.start_time, candidate.end_time, other.start_time, other.end_time
        )
    ]


def has_conflict(candidate: Slot, existing: Iterable[Slot]) -> bool:
    return bool(find_conflicts(candidate, existing))


# --- Authoritative write path ---


def lock_venue(session: Session, venue_name: str) -> None:
    """Take the venue's write lock for the rest of the transaction.

    The revision bump is a write, so it holds the row lock on Postgres and
    the database write lock on SQLite until commit or rollback.
    """
    result = session.exec(
        update(Venue)
        .where(col(Venue.name) == venue_name)
        .values(revision=Venue.revision + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid venue specified.",
        )


def venue_bookings(session: Session, venue_name: str) -> list[Booking]:
    return list(session.exec(select(Booking).where(Booking.venue == venue_name)).all())


def check_slot_available(session: Session, candidate: Slot) -> None:
    """Re-read the venue's bookings under the lock and reject overlaps."""
    conflicts = find_conflicts(candidate, venue_bookings(session, candidate.venue))
    if conflicts:
        session.rollback()
        logger.info(
            "Rejected %s %s-%s at %s: overlaps %s",
            candidate.id,
            candidate.start_time,
            candidate.end_time,
            candidate.venue,
            [c.id for c in conflicts],
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": "Booking conflict detected.",
                "conflicting_booking_ids": [c.id for c in conflicts],
            },
        )


def insert_booking(session: Session, db_booking: Booking) -> Booking:
    """Check and add a booking. Caller holds the venue lock and commits."""
    check_slot_available(session, db_booking)
    session.add(db_booking)
    return db_booking


def create_booking(
    session: Session, booking: BookingCreate, creator: Optional[CurrentUser] = None
) -> Booking:
    db_booking = Booking(**booking.model_dump())
    if creator is not None:
        db_booking.user_id = creator.uid
        db_booking.user_display_name = creator.display_name
        db_booking.user_email = creator.email
    lock_venue(session, db_booking.venue)
    insert_booking(session, db_booking)
    session.commit()
    session.refresh(db_booking)
    logger.info("Created booking %s at %s", db_booking.id, db_booking.venue)
    return db_booking


def update_booking(
    session: Session, db_booking: Booking, changes: BookingUpdate
) -> Booking:
    """Apply changes and re-check the slot, excluding the booking itself."""
    values = changes.model_dump(exclude_unset=True, exclude_none=True)
    candidate = Booking(**{**db_booking.model_dump(), **values})
    if candidate.end_time <= candidate.start_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_time must be after start_time",
        )
    lock_venue(session, candidate.venue)
    check_slot_available(session, candidate)
    for key, value in values.items():
        setattr(db_booking, key, value)
    session.commit()
    session.refresh(db_booking)
    logger.info("Updated booking %s", db_booking.id)
    return db_booking


def delete_booking(session: Session, db_booking: Booking) -> None:
    session.delete(db_booking)
    session.commit()
    logger.info("Deleted booking %s", db_booking.id)


def list_bookings(
    session: Session,
    venue: Optional[str] = None,
    datetime_from: Optional[datetime] = None,
    datetime_until: Optional[datetime] = None,
) -> list[Booking]:
    query = select(Booking)
    if venue:
        query = query.where(Booking.venue == venue)
    if datetime_from:
        query = query.where(Booking.end_time > datetime_from)
    if datetime_until:
        query = query.where(Booking.start_time < datetime_until)
    return list(session.exec(query.order_by(Booking.start_time)).all())
