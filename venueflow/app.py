from contextlib import asynccontextmanager
from typing import Annotated, Optional
from datetime import datetime
import logging

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from sqlmodel import Session, select

from .approvals import (
    approve_request,
    edit_request,
    find_request_conflicts,
    get_request_or_404,
    notify_submitter,
    reject_request,
    submit_request,
    withdraw_request,
)
from .auth import CurrentUser, get_current_user, is_owner_or_admin, require_admin
from .bookings import create_booking, delete_booking, list_bookings, update_booking
from .calendar_events import CalendarEvent, group_by_venue, project_events
from .catalog import venue_names
from .changefeed import Change, ChangeFeed, Operation, get_change_feed
from .config import get_settings
from .database import get_session, init_db
from .models import (
    Booking,
    BookingCreate,
    BookingRead,
    BookingRequest,
    BookingRequestCreate,
    BookingRequestRead,
    BookingRequestStatus,
    BookingRequestUpdate,
    BookingUpdate,
    ItemRead,
    LoanCreate,
    LoanRead,
    RejectionCreate,
    RequestConflicts,
    Venue,
    VenueRead,
)
from .loans import create_loan, list_items, list_loans, return_loan
from .notifications import EmailNotifier, NotificationResult, get_notifier
from .timeutils import to_storage

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class ApprovalResult(BaseModel):
    request: BookingRequestRead
    booking: BookingRead
    notification: NotificationResult


class RejectionResult(BaseModel):
    request: BookingRequestRead
    notification: NotificationResult


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


settings = get_settings()
configure_logging(settings.LOG_LEVEL)

app = FastAPI(
    lifespan=lifespan,
    title="Venue bookings and item loans API",
    description="API to book venues, review booking requests, and loan shared equipment.",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


def publish(feed: ChangeFeed, collection: str, operation: Operation, id: str) -> None:
    feed.publish(Change(collection=collection, operation=operation, id=id))


def get_booking_or_404(session: Session, id: str) -> Booking:
    db_booking = session.get(Booking, id)
    if not db_booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return db_booking


@app.get("/health", tags=["Meta"])
def health():
    return {"ok": True}


# --- Users ---
@app.get(
    "/users/me",
    response_model=CurrentUser,
    summary="Get current user",
    response_description="Identity decoded from the bearer token",
    tags=["Users"],
)
def read_users_me(current_user: Annotated[CurrentUser, Depends(get_current_user)]):
    """Get current user identity and admin flag."""
    return current_user


# --- Venues & calendar ---
@app.get(
    "/venues",
    response_model=list[VenueRead],
    summary="List venues",
    response_description="Bookable venues with their calendar colours",
    tags=["Venues"],
)
def list_venues(session: Session = Depends(get_session)):
    """List all bookable venues."""
    return session.exec(select(Venue).order_by(Venue.name)).all()


@app.get(
    "/calendar/events",
    response_model=list[CalendarEvent],
    summary="Calendar events for selected venues",
    response_description="Display-ready events",
    tags=["Venues"],
)
def calendar_events(
    session: Session = Depends(get_session),
    venues: Optional[list[str]] = Query(
        None, description="Venues to show; all venues when omitted"
    ),
):
    """
    Project bookings into calendar events, coloured by venue.
    - **venues**: Repeatable venue filter. Unknown venues contribute nothing.
    """
    selected = venues if venues is not None else venue_names()
    grouped = group_by_venue(list_bookings(session), venue_names())
    return project_events(grouped, selected)


# --- Bookings ---
@app.get(
    "/bookings",
    response_model=list[BookingRead],
    summary="List bookings",
    response_description="List of bookings",
    tags=["Bookings"],
)
def read_bookings(
    session: Session = Depends(get_session),
    venue: Optional[str] = Query(None, description="Only bookings for this venue"),
    datetime_from: Optional[datetime] = Query(
        None, description="Only bookings ending after this time"
    ),
    datetime_until: Optional[datetime] = Query(
        None, description="Only bookings starting before this time"
    ),
):
    """List bookings with optional venue and time-window filters.
    - **venue**: Optional venue name
    - **datetime_from**: Optional lower bound of the window
    - **datetime_until**: Optional upper bound of the window
    """
    return list_bookings(
        session,
        venue=venue,
        datetime_from=to_storage(datetime_from) if datetime_from else None,
        datetime_until=to_storage(datetime_until) if datetime_until else None,
    )


@app.get(
    "/bookings/grouped",
    response_model=dict[str, list[BookingRead]],
    summary="Bookings grouped by venue",
    response_description="Mapping of venue name to bookings",
    tags=["Bookings"],
)
def read_bookings_grouped(session: Session = Depends(get_session)):
    """All bookings keyed by venue; every configured venue is present."""
    return group_by_venue(list_bookings(session), venue_names())


@app.post(
    "/bookings",
    response_model=BookingRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create new booking",
    response_description="Booking data",
    tags=["Bookings"],
)
def create_booking_route(
    booking: BookingCreate,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Create a booking directly if the venue is free. Admin access only.
    - **title**: Booking title
    - **venue**: Venue name
    - **start_time**: Start of booking (datetime)
    - **end_time**: End of booking (datetime), after start_time
    """
    db_booking = create_booking(session, booking, creator=current_user)
    publish(feed, "bookings", Operation.CREATED, db_booking.id)
    return db_booking


@app.put(
    "/bookings/{id}",
    response_model=BookingRead,
    summary="Update existing booking",
    response_description="Updated booking data",
    tags=["Bookings"],
)
def update_booking_route(
    id: str,
    changes: BookingUpdate,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """
    Update title, venue or time of a booking. The new slot is re-checked for conflicts.
    - **id**: Booking ID
    """
    db_booking = get_booking_or_404(session, id)
    if not is_owner_or_admin(current_user, db_booking.user_id):
        raise HTTPException(
            status_code=403, detail="Not authorised to change someone else's booking"
        )
    db_booking = update_booking(session, db_booking, changes)
    publish(feed, "bookings", Operation.UPDATED, db_booking.id)
    return db_booking


@app.delete(
    "/bookings/{id}",
    summary="Delete booking",
    tags=["Bookings"],
)
def delete_booking_route(
    id: str,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """
    Cancel existing booking. Use PUT /bookings/{id} to update instead.
    - **id**: Booking ID.
    """
    db_booking = get_booking_or_404(session, id)
    if not is_owner_or_admin(current_user, db_booking.user_id):
        raise HTTPException(
            status_code=403, detail="Not authorised to delete someone else's booking"
        )
    delete_booking(session, db_booking)
    publish(feed, "bookings", Operation.DELETED, id)
    return {"ok": True}


# --- Booking requests ---
@app.post(
    "/booking-attempts",
    response_model=BookingRequestRead,
    status_code=status.HTTP_201_CREATED,
    summary="Request a booking",
    response_description="Pending booking request",
    tags=["Booking requests"],
)
def submit_booking_request(
    data: BookingRequestCreate,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Submit a slot for admin approval. Overlaps do not block submission."""
    request = submit_request(session, data, current_user)
    publish(feed, "booking_requests", Operation.CREATED, request.id)
    return request


@app.get(
    "/booking-attempts",
    response_model=list[BookingRequestRead],
    summary="List booking requests",
    response_description="List of booking requests",
    tags=["Booking requests"],
)
def read_booking_requests(
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(require_admin),
    status_filter: Optional[BookingRequestStatus] = Query(
        None, alias="status", description="Only requests in this status"
    ),
):
    """List all booking requests. Admin access only."""
    query = select(BookingRequest)
    if status_filter:
        query = query.where(BookingRequest.status == status_filter)
    return session.exec(query.order_by(BookingRequest.submitted_at)).all()


@app.get(
    "/booking-attempts/mine",
    response_model=list[BookingRequestRead],
    summary="List my booking requests",
    tags=["Booking requests"],
)
def read_my_booking_requests(
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    query = (
        select(BookingRequest)
        .where(BookingRequest.user_id == current_user.uid)
        .order_by(BookingRequest.submitted_at)
    )
    return session.exec(query).all()


@app.get(
    "/booking-attempts/{id}/conflicts",
    response_model=RequestConflicts,
    summary="Conflicts for a booking request",
    response_description="Overlapping bookings and competing pending requests",
    tags=["Booking requests"],
)
def read_booking_request_conflicts(
    id: str,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(require_admin),
):
    """Informational only; competing pending requests never block approval."""
    return find_request_conflicts(session, get_request_or_404(session, id))


@app.put(
    "/booking-attempts/{id}",
    response_model=BookingRequestRead,
    summary="Edit pending booking request",
    tags=["Booking requests"],
)
def update_booking_request(
    id: str,
    changes: BookingRequestUpdate,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """
    Change the requested title, venue or time while the request is pending.
    - **id**: Booking request ID
    """
    request = edit_request(
        session, get_request_or_404(session, id), changes, current_user
    )
    publish(feed, "booking_requests", Operation.UPDATED, request.id)
    return request


@app.delete(
    "/booking-attempts/{id}",
    summary="Withdraw pending booking request",
    tags=["Booking requests"],
)
def delete_booking_request(
    id: str,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Withdraw a request that has not been decided yet."""
    withdraw_request(session, get_request_or_404(session, id), current_user)
    publish(feed, "booking_requests", Operation.DELETED, id)
    return {"ok": True}


@app.post(
    "/booking-attempts/{id}/approve",
    response_model=ApprovalResult,
    summary="Approve booking request",
    response_description="Approved request, created booking and notification outcome",
    tags=["Booking requests"],
)
def approve_booking_request(
    id: str,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(require_admin),
    notifier: EmailNotifier = Depends(get_notifier),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """
    Approve a pending request. Fails with 409 if the slot is taken by a booking;
    the request then stays pending.
    """
    request = get_request_or_404(session, id)
    booking = approve_request(session, request, current_user)
    publish(feed, "bookings", Operation.CREATED, booking.id)
    publish(feed, "booking_requests", Operation.UPDATED, request.id)
    notification = notify_submitter(notifier, request)
    return ApprovalResult(
        request=BookingRequestRead.model_validate(request),
        booking=BookingRead.model_validate(booking),
        notification=notification,
    )


@app.post(
    "/booking-attempts/{id}/reject",
    response_model=RejectionResult,
    summary="Reject booking request",
    response_description="Rejected request and notification outcome",
    tags=["Booking requests"],
)
def reject_booking_request(
    id: str,
    rejection: Optional[RejectionCreate] = None,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(require_admin),
    notifier: EmailNotifier = Depends(get_notifier),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """
    Reject a pending request. Irreversible.
    - **reason**: Optional reason shown to the submitter
    """
    reason = rejection.reason if rejection else None
    request = reject_request(
        session, get_request_or_404(session, id), current_user, reason
    )
    publish(feed, "booking_requests", Operation.UPDATED, request.id)
    notification = notify_submitter(notifier, request)
    return RejectionResult(
        request=BookingRequestRead.model_validate(request),
        notification=notification,
    )


# --- Items & loans ---
@app.get(
    "/items",
    response_model=list[ItemRead],
    summary="List loanable items",
    response_description="Items with available quantity",
    tags=["Items"],
)
def read_items(
    session: Session = Depends(get_session),
    category: Optional[str] = Query(
        None,
        description="Filter by item category (partial match)",
        min_length=1,
        max_length=50,
        examples=["Electronics"],
    ),
):
    """List all items with their total and available quantity."""
    return list_items(session, category)


@app.post(
    "/loans",
    response_model=LoanRead,
    status_code=status.HTTP_201_CREATED,
    summary="Loan an item",
    response_description="Loan data",
    tags=["Loans"],
)
def create_loan_route(
    loan: LoanCreate,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Loan an item if enough of it is available.
    - **item_id**: Item requested
    - **quantity**: How many units
    - **expected_return_date**: When the item will come back (datetime)
    """
    db_loan = create_loan(session, loan, current_user)
    publish(feed, "loans", Operation.CREATED, db_loan.id)
    publish(feed, "items", Operation.UPDATED, db_loan.item_id)
    return db_loan


@app.get(
    "/loans",
    response_model=list[LoanRead],
    summary="List loans",
    response_description="List of loans",
    tags=["Loans"],
)
def read_loans(
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
    active: bool = Query(False, description="Only loans not yet returned"),
):
    """Admins see every loan, other users only their own."""
    user_id = None if current_user.is_admin else current_user.uid
    return list_loans(session, active_only=active, user_id=user_id)


@app.post(
    "/loans/{id}/return",
    response_model=LoanRead,
    summary="Return a loaned item",
    response_description="Closed loan",
    tags=["Loans"],
)
def return_loan_route(
    id: str,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Close a loan and put its quantity back. Borrower or admin only."""
    db_loan = return_loan(session, id, current_user)
    publish(feed, "loans", Operation.UPDATED, db_loan.id)
    publish(feed, "items", Operation.UPDATED, db_loan.item_id)
    return db_loan


# --- Live updates ---
@app.get("/changes", summary="Stream changes", tags=["Live updates"])
async def stream_changes(
    request: Request, feed: ChangeFeed = Depends(get_change_feed)
):
    """Server-sent events, one per committed change. Clients re-read the document."""
    return StreamingResponse(
        feed.stream(request.is_disconnected),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
