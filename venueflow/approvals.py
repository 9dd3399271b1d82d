# pending_approval -> approved | rejected; both terminal.

from datetime import datetime
from typing import NamedTuple, Optional
import logging

from fastapi import HTTPException, status
from sqlalchemy import delete, update
from sqlmodel import Session, col, select

from .auth import CurrentUser, is_owner_or_admin
from .bookings import find_conflicts, insert_booking, lock_venue, venue_bookings
from .models import (
    Booking,
    BookingRequest,
    BookingRequestCreate,
    BookingRequestStatus,
    BookingRequestUpdate,
    RequestConflicts,
    Venue,
)
from .notifications import EmailNotifier, NotificationResult, request_decision_email
from .timeutils import utcnow

logger = logging.getLogger(__name__)

PENDING = BookingRequestStatus.PENDING_APPROVAL


class RequestSlot(NamedTuple):
    id: str
    venue: str
    start_time: datetime
    end_time: datetime


def as_slot(request: BookingRequest) -> RequestSlot:
    return RequestSlot(
        id=request.id,
        venue=request.requested_venue,
        start_time=request.requested_start,
        end_time=request.requested_end,
    )


def get_request_or_404(session: Session, request_id: str) -> BookingRequest:
    request = session.get(BookingRequest, request_id)
    if not request:
        raise HTTPException(status_code=404, detail="Booking request not found")
    return request


def ensure_pending(request: BookingRequest) -> None:
    if request.status != PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Booking request is already {request.status.value}",
        )


def ensure_can_modify(request: BookingRequest, user: CurrentUser) -> None:
    if not is_owner_or_admin(user, request.user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only change your own booking requests.",
        )


def ensure_venue_exists(session: Session, venue_name: str) -> None:
    if session.get(Venue, venue_name) is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid venue specified.",
        )


def transition(session: Session, request_id: str, **values) -> None:
    """Apply values to a still-pending request, or roll back with 409."""
    result = session.exec(
        update(BookingRequest)
        .where(col(BookingRequest.id) == request_id)
        .where(col(BookingRequest.status) == PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Booking request is no longer pending approval",
        )


def submit_request(
    session: Session, data: BookingRequestCreate, submitter: CurrentUser
) -> BookingRequest:
    """Record a request. Overlaps are not checked here; admins see them on review."""
    ensure_venue_exists(session, data.requested_venue)
    request = BookingRequest(
        **data.model_dump(),
        user_id=submitter.uid,
        user_display_name=submitter.display_name,
        user_email=submitter.email,
    )
    session.add(request)
    session.commit()
    session.refresh(request)
    logger.info(
        "Booking request %s submitted by %s for %s",
        request.id,
        submitter.uid,
        request.requested_venue,
    )
    return request


def edit_request(
    session: Session,
    request: BookingRequest,
    changes: BookingRequestUpdate,
    user: CurrentUser,
) -> BookingRequest:
    ensure_can_modify(request, user)
    ensure_pending(request)
    values = changes.model_dump(exclude_unset=True, exclude_none=True)
    start = values.get("requested_start", request.requested_start)
    end = values.get("requested_end", request.requested_end)
    if end <= start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="requested_end must be after requested_start",
        )
    if "requested_venue" in values:
        ensure_venue_exists(session, values["requested_venue"])
    if values:
        transition(session, request.id, **values)
        session.commit()
    session.refresh(request)
    return request


def withdraw_request(
    session: Session, request: BookingRequest, user: CurrentUser
) -> None:
    ensure_can_modify(request, user)
    ensure_pending(request)
    # The row is gone after commit, so the instance cannot be refreshed.
    request_id = request.id
    result = session.exec(
        delete(BookingRequest)
        .where(col(BookingRequest.id) == request_id)
        .where(col(BookingRequest.status) == PENDING)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Booking request is no longer pending approval",
        )
    session.commit()
    logger.info("Booking request %s withdrawn by %s", request_id, user.uid)


def pending_requests(session: Session, venue_name: Optional[str] = None) -> list[BookingRequest]:
    query = select(BookingRequest).where(BookingRequest.status == PENDING)
    if venue_name:
        query = query.where(BookingRequest.requested_venue == venue_name)
    return list(session.exec(query.order_by(BookingRequest.submitted_at)).all())


def find_request_conflicts(
    session: Session, request: BookingRequest
) -> RequestConflicts:
    """Informational overlaps with bookings and with other pending requests."""
    slot = as_slot(request)
    bookings = find_conflicts(slot, venue_bookings(session, slot.venue))
    competing = find_conflicts(
        slot,
        [as_slot(other) for other in pending_requests(session, slot.venue)],
    )
    return RequestConflicts(
        request_id=request.id,
        conflicting_booking_ids=[b.id for b in bookings],
        conflicting_request_ids=[r.id for r in competing],
    )


def approve_request(
    session: Session, request: BookingRequest, admin: CurrentUser
) -> Booking:
    """Create the booking and mark the request approved in one transaction."""
    ensure_pending(request)
    lock_venue(session, request.requested_venue)
    booking = Booking(
        title=request.requested_title,
        venue=request.requested_venue,
        start_time=request.requested_start,
        end_time=request.requested_end,
        user_id=request.user_id,
        user_display_name=request.user_display_name,
        user_email=request.user_email,
        booking_request_id=request.id,
    )
    insert_booking(session, booking)
    session.flush()
    transition(
        session,
        request.id,
        status=BookingRequestStatus.APPROVED,
        booking_id=booking.id,
        reviewed_by=admin.uid,
        reviewed_at=utcnow(),
    )
    session.commit()
    session.refresh(request)
    session.refresh(booking)
    logger.info(
        "Booking request %s approved by %s as booking %s",
        request.id,
        admin.uid,
        booking.id,
    )
    return booking


def reject_request(
    session: Session,
    request: BookingRequest,
    admin: CurrentUser,
    reason: Optional[str] = None,
) -> BookingRequest:
    ensure_pending(request)
    transition(
        session,
        request.id,
        status=BookingRequestStatus.REJECTED,
        rejection_reason=reason or None,
        reviewed_by=admin.uid,
        reviewed_at=utcnow(),
    )
    session.commit()
    session.refresh(request)
    logger.info("Booking request %s rejected by %s", request.id, admin.uid)
    return request


def notify_submitter(
    notifier: EmailNotifier, request: BookingRequest
) -> NotificationResult:
    """Best effort; the decision already committed stands whatever happens here."""
    if not request.user_email:
        logger.warning("Booking request %s has no email address", request.id)
        return NotificationResult(success=False, message="Submitter has no email address.")
    subject, body = request_decision_email(request)
    try:
        return notifier.send(request.user_email, subject, body)
    except Exception as exc:
        logger.exception("Notifier failed for booking request %s", request.id)
        return NotificationResult(success=False, message=f"Notification failed: {exc}")
