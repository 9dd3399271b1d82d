from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import SQLModel, Field
from pydantic import field_serializer, field_validator, model_validator
import datetime
import enum
import uuid
from typing import Optional

from .timeutils import to_display, to_storage, utcnow


def generate_id() -> str:
    """Return a random (version 4) UUID string, 122 bits of entropy."""
    return str(uuid.uuid4())


def display_iso(value: Optional[datetime.datetime]) -> Optional[str]:
    if value is None:
        return None
    return to_display(value).isoformat()


def clean_title(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("title is required")
    return value


def utc_column(**kwargs):
    """Field stored as naive UTC in a plain DATETIME column."""
    return Field(sa_type=DateTime(timezone=False), **kwargs)


#############
# VENUE MODEL
#############


class VenueBase(SQLModel):
    name: str = Field(primary_key=True)
    color: str


class Venue(VenueBase, table=True):
    # Bumped inside every booking write for the venue; doubles as its lock.
    revision: int = Field(default=0)


class VenueRead(VenueBase):
    pass


###############
# BOOKING MODEL
###############


class BookingBase(SQLModel):
    title: str = Field(min_length=1)
    venue: str = Field(foreign_key="venue.name", index=True)
    start_time: datetime.datetime = utc_column()
    end_time: datetime.datetime = utc_column()


class Booking(BookingBase, table=True):
    id: str = Field(default_factory=generate_id, primary_key=True)
    user_id: Optional[str] = Field(default=None, index=True)
    user_display_name: Optional[str] = None
    user_email: Optional[str] = None
    booking_request_id: Optional[str] = Field(default=None, index=True)
    created_at: datetime.datetime = utc_column(default_factory=utcnow)


class BookingCreate(BookingBase):
    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        return clean_title(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalise_time(cls, value: datetime.datetime) -> datetime.datetime:
        return to_storage(value)

    @model_validator(mode="after")
    def _end_after_start(self) -> "BookingCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BookingUpdate(SQLModel):
    title: Optional[str] = Field(default=None, min_length=1)
    venue: Optional[str] = None
    start_time: Optional[datetime.datetime] = None
    end_time: Optional[datetime.datetime] = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: Optional[str]) -> Optional[str]:
        return clean_title(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalise_time(
        cls, value: Optional[datetime.datetime]
    ) -> Optional[datetime.datetime]:
        return to_storage(value) if value is not None else None


class BookingRead(BookingBase):
    id: str
    user_id: Optional[str] = None
    user_display_name: Optional[str] = None
    user_email: Optional[str] = None
    booking_request_id: Optional[str] = None
    created_at: Optional[datetime.datetime] = None

    @field_serializer("start_time", "end_time", "created_at")
    def _serialise_time(self, value: Optional[datetime.datetime]) -> Optional[str]:
        return display_iso(value)


#######################
# BOOKING REQUEST MODEL
#######################


class BookingRequestStatus(str, enum.Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class BookingRequestBase(SQLModel):
    requested_title: str = Field(min_length=1)
    requested_venue: str = Field(index=True)
    requested_start: datetime.datetime = utc_column()
    requested_end: datetime.datetime = utc_column()


class BookingRequest(BookingRequestBase, table=True):
    id: str = Field(default_factory=generate_id, primary_key=True)
    user_id: str = Field(index=True)
    user_display_name: Optional[str] = None
    user_email: Optional[str] = None
    submitted_at: datetime.datetime = utc_column(default_factory=utcnow)
    status: BookingRequestStatus = Field(
        default=BookingRequestStatus.PENDING_APPROVAL, index=True
    )
    rejection_reason: Optional[str] = None
    # Weak reference; the booking may later be deleted independently.
    booking_id: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime.datetime] = utc_column(default=None)


class BookingRequestCreate(BookingRequestBase):
    @field_validator("requested_title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        return clean_title(value)

    @field_validator("requested_start", "requested_end")
    @classmethod
    def _normalise_time(cls, value: datetime.datetime) -> datetime.datetime:
        return to_storage(value)

    @model_validator(mode="after")
    def _end_after_start(self) -> "BookingRequestCreate":
        if self.requested_end <= self.requested_start:
            raise ValueError("requested_end must be after requested_start")
        return self


class BookingRequestUpdate(SQLModel):
    requested_title: Optional[str] = Field(default=None, min_length=1)
    requested_venue: Optional[str] = None
    requested_start: Optional[datetime.datetime] = None
    requested_end: Optional[datetime.datetime] = None

    @field_validator("requested_title")
    @classmethod
    def _strip_title(cls, value: Optional[str]) -> Optional[str]:
        return clean_title(value)

    @field_validator("requested_start", "requested_end")
    @classmethod
    def _normalise_time(
        cls, value: Optional[datetime.datetime]
    ) -> Optional[datetime.datetime]:
        return to_storage(value) if value is not None else None


class BookingRequestRead(BookingRequestBase):
    id: str
    user_id: str
    user_display_name: Optional[str] = None
    user_email: Optional[str] = None
    submitted_at: datetime.datetime
    status: BookingRequestStatus
    rejection_reason: Optional[str] = None
    booking_id: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime.datetime] = None

    @field_serializer(
        "requested_start", "requested_end", "submitted_at", "reviewed_at"
    )
    def _serialise_time(self, value: Optional[datetime.datetime]) -> Optional[str]:
        return display_iso(value)


class RejectionCreate(SQLModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class RequestConflicts(SQLModel):
    request_id: str
    conflicting_booking_ids: list[str] = []
    conflicting_request_ids: list[str] = []


############
# ITEM MODEL
############


class ItemBase(SQLModel):
    name: str
    category: str
    description: Optional[str] = None


class Item(ItemBase, table=True):
    __table_args__ = (
        CheckConstraint(
            "available_quantity >= 0 AND available_quantity <= total_quantity",
            name="ck_item_available_quantity",
        ),
    )

    id: str = Field(primary_key=True)
    total_quantity: int = Field(ge=0)
    available_quantity: int = Field(ge=0)


class ItemRead(ItemBase):
    id: str
    total_quantity: int
    available_quantity: int


############
# LOAN MODEL
############


class LoanBase(SQLModel):
    item_id: str = Field(foreign_key="item.id", index=True)
    quantity: int = Field(default=1, gt=0)
    expected_return_date: datetime.datetime = utc_column()


class Loan(LoanBase, table=True):
    id: str = Field(default_factory=generate_id, primary_key=True)
    item_name: str
    user_id: str = Field(index=True)
    user_display_name: Optional[str] = None
    user_email: Optional[str] = None
    loan_date: datetime.datetime = utc_column(default_factory=utcnow)
    return_date: Optional[datetime.datetime] = utc_column(default=None, index=True)


class LoanCreate(LoanBase):
    @field_validator("expected_return_date")
    @classmethod
    def _normalise_time(cls, value: datetime.datetime) -> datetime.datetime:
        return to_storage(value)


class LoanRead(LoanBase):
    id: str
    item_name: str
    user_id: str
    user_display_name: Optional[str] = None
    user_email: Optional[str] = None
    loan_date: datetime.datetime
    return_date: Optional[datetime.datetime] = None

    @field_serializer("expected_return_date", "loan_date", "return_date")
    def _serialise_time(self, value: Optional[datetime.datetime]) -> Optional[str]:
        return display_iso(value)
