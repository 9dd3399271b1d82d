import datetime
import uuid

from sqlalchemy import DateTime

from .bookings import find_conflicts, has_conflict, overlaps
from .calendar_events import EVENT_TEXT_COLOR, group_by_venue, project_events
from .catalog import DEFAULT_VENUE_COLOR, get_venue_color, venue_names
from .models import Booking, BookingRequest, Loan, generate_id


def at(hour, minute=0, day=7):
    return datetime.datetime(2030, 1, day, hour, minute)


def booking(id, start, end, venue="Room A", title=None):
    return Booking(
        id=id, title=title or f"Booking {id}", venue=venue, start_time=start, end_time=end
    )


# --------------------
# Interval overlap
# --------------------


def test_touching_intervals_do_not_overlap():
    assert not overlaps(at(9), at(10), at(10), at(11))
    assert not overlaps(at(10), at(11), at(9), at(10))


def test_intersecting_intervals_overlap():
    assert overlaps(at(9), at(10), at(9, 30), at(10, 30))
    assert overlaps(at(9, 30), at(10, 30), at(9), at(10))


def test_contained_interval_overlaps():
    assert overlaps(at(9), at(12), at(10), at(11))
    assert overlaps(at(10), at(11), at(9), at(12))


def test_identical_intervals_overlap():
    assert overlaps(at(9), at(10), at(9), at(10))


# --------------------
# Conflict checker
# --------------------


def test_back_to_back_bookings_do_not_conflict_either_way():
    a = booking("a", at(9), at(10))
    b = booking("b", at(10), at(11))
    assert not has_conflict(a, [b])
    assert not has_conflict(b, [a])


def test_overlapping_bookings_conflict_either_way():
    a = booking("a", at(9), at(10))
    b = booking("b", at(9, 59), at(11))
    assert has_conflict(a, [b])
    assert has_conflict(b, [a])


def test_different_venues_never_conflict():
    a = booking("a", at(9), at(10), venue="Room A")
    b = booking("b", at(9), at(10), venue="Room B")
    assert not has_conflict(a, [b])
    assert not has_conflict(b, [a])


def test_booking_does_not_conflict_with_itself():
    a = booking("a", at(9), at(10))
    assert not has_conflict(a, [a])


def test_edited_booking_only_checked_against_others():
    original = booking("a", at(9), at(10))
    moved = booking("a", at(9, 30), at(10, 30))
    neighbour = booking("b", at(10, 30), at(11))
    assert not has_conflict(moved, [original, neighbour])


def test_find_conflicts_returns_only_overlapping_same_venue_bookings():
    candidate = booking("new", at(9, 30), at(11))
    existing = [
        booking("early", at(8), at(9)),
        booking("overlap-1", at(9), at(10)),
        booking("overlap-2", at(10, 30), at(12)),
        booking("elsewhere", at(9), at(12), venue="Room B"),
        booking("after", at(11), at(12)),
    ]
    assert [b.id for b in find_conflicts(candidate, existing)] == [
        "overlap-1",
        "overlap-2",
    ]


def test_no_existing_bookings_means_no_conflict():
    assert not has_conflict(booking("a", at(9), at(10)), [])


# --------------------
# Identifiers
# --------------------


def test_generated_ids_are_uuid4():
    value = generate_id()
    assert uuid.UUID(value).version == 4


def test_generated_ids_are_unique():
    assert len({generate_id() for _ in range(1000)}) == 1000


def test_new_booking_gets_generated_id():
    a = Booking(title="A", venue="Room A", start_time=at(9), end_time=at(10))
    b = Booking(title="B", venue="Room A", start_time=at(9), end_time=at(10))
    assert a.id and b.id and a.id != b.id


# --------------------
# Calendar projection
# --------------------


def test_no_selected_venues_projects_nothing():
    grouped = {"Room A": [booking("a", at(9), at(10))]}
    assert project_events(grouped, []) == []


def test_all_selected_venues_projects_every_booking_with_venue_color():
    alpha, hub = venue_names()[0], venue_names()[1]
    grouped = {
        alpha: [booking("a1", at(9), at(10), alpha), booking("a2", at(11), at(12), alpha)],
        hub: [booking("h1", at(9), at(10), hub)],
    }
    events = project_events(grouped, [alpha, hub])

    assert sorted(e.id for e in events) == ["a1", "a2", "h1"]
    for event in events:
        assert event.background_color == get_venue_color(event.venue)
        assert event.border_color == event.background_color
        assert event.text_color == EVENT_TEXT_COLOR
    assert {e.venue for e in events if e.id.startswith("a")} == {alpha}


def test_unselected_venues_never_appear():
    grouped = {
        "Room A": [booking("a", at(9), at(10), "Room A")],
        "Room B": [booking("b", at(9), at(10), "Room B")],
    }
    events = project_events(grouped, ["Room B"])
    assert [e.id for e in events] == ["b"]


def test_missing_venue_is_treated_as_empty():
    grouped = {"Room A": [booking("a", at(9), at(10))]}
    events = project_events(grouped, ["Nowhere", "Room A"])
    assert [e.id for e in events] == ["a"]


def test_unknown_venue_gets_default_color():
    grouped = {"Room A": [booking("a", at(9), at(10))]}
    (event,) = project_events(grouped, ["Room A"])
    assert event.background_color == DEFAULT_VENUE_COLOR


def test_custom_color_lookup():
    grouped = {"Room A": [booking("a", at(9), at(10))]}
    (event,) = project_events(grouped, ["Room A"], color_for={"Room A": "#123456"}.get)
    assert event.background_color == "#123456"


def test_event_keeps_original_booking():
    original = booking("a", at(9), at(10), title="Standup")
    (event,) = project_events({"Room A": [original]}, ["Room A"])
    assert event.title == "Standup"
    assert event.start == original.start_time
    assert event.end == original.end_time
    assert event.original_booking.id == "a"
    assert event.original_booking.venue == "Room A"


def test_projection_is_deterministic():
    grouped = {
        "Room A": [booking("a", at(9), at(10))],
        "Room B": [booking("b", at(9), at(10), "Room B")],
    }
    first = project_events(grouped, ["Room A", "Room B"])
    second = project_events(grouped, ["Room A", "Room B"])
    assert [e.model_dump() for e in first] == [e.model_dump() for e in second]


def test_group_by_venue_includes_empty_venues():
    grouped = group_by_venue([booking("a", at(9), at(10), "Room A")], ["Room A", "Room B"])
    assert [b.id for b in grouped["Room A"]] == ["a"]
    assert grouped["Room B"] == []


def test_group_by_venue_keeps_unlisted_venues():
    grouped = group_by_venue([booking("x", at(9), at(10), "Annex")], ["Room A"])
    assert set(grouped) == {"Room A", "Annex"}


def test_stored_timestamps_use_naive_datetime_columns():
    columns = [
        Booking.__table__.c.start_time,
        Booking.__table__.c.end_time,
        Booking.__table__.c.created_at,
        BookingRequest.__table__.c.requested_start,
        BookingRequest.__table__.c.reviewed_at,
        Loan.__table__.c.loan_date,
        Loan.__table__.c.return_date,
    ]
    for column in columns:
        assert type(column.type) is DateTime
        assert column.type.timezone is False


def test_naive_utc_booking_round_trips(session):
    db_booking = Booking(
        title="Stored", venue="Innovation Hub", start_time=at(1), end_time=at(2)
    )
    session.add(db_booking)
    session.commit()
    session.refresh(db_booking)
    assert db_booking.start_time == at(1)
    assert db_booking.start_time.tzinfo is None
