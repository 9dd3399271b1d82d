from datetime import datetime
from typing import Callable, Iterable, Mapping, Sequence

from pydantic import BaseModel, field_serializer

from .catalog import get_venue_color
from .models import Booking, BookingRead, display_iso

EVENT_TEXT_COLOR = "#FFFFFF"


class CalendarEvent(BaseModel):
    id: str
    title: str
    start: datetime
    end: datetime
    venue: str
    background_color: str
    border_color: str
    text_color: str = EVENT_TEXT_COLOR
    original_booking: BookingRead

    @field_serializer("start", "end")
    def _serialise_time(self, value: datetime) -> str:
        return display_iso(value)


def group_by_venue(
    bookings: Iterable[Booking], venue_names: Iterable[str] = ()
) -> dict[str, list[Booking]]:
    """Group bookings by venue; every name in venue_names gets a key."""
    grouped: dict[str, list[Booking]] = {name: [] for name in venue_names}
    for booking in bookings:
        grouped.setdefault(booking.venue, []).append(booking)
    return grouped


def project_events(
    bookings_by_venue: Mapping[str, Sequence[Booking]],
    selected_venues: Sequence[str],
    color_for: Callable[[str], str] = get_venue_color,
) -> list[CalendarEvent]:
    events: list[CalendarEvent] = []
    for venue_name in selected_venues:
        color = color_for(venue_name)
        for booking in bookings_by_venue.get(venue_name, []):
            events.append(
                CalendarEvent(
                    id=booking.id,
                    title=booking.title,
                    start=booking.start_time,
                    end=booking.end_time,
                    venue=venue_name,
                    background_color=color,
                    border_color=color,
                    original_booking=BookingRead.model_validate(booking),
                )
            )
    return events
