from dataclasses import dataclass


@dataclass(frozen=True)
class VenueSpec:
    name: str
    color: str


@dataclass(frozen=True)
class ItemSpec:
    id: str
    name: str
    category: str
    description: str
    quantity: int


DEFAULT_VENUE_COLOR = "#808080"

DEFAULT_VENUES: list[VenueSpec] = [
    VenueSpec(name="Conference Room Alpha", color="#FF6F00"),
    VenueSpec(name="Innovation Hub", color="#00ACC1"),
    VenueSpec(name="Synergy Space", color="#5E35B1"),
    VenueSpec(name="Focus Booth Zen", color="#43A047"),
]

DEFAULT_ITEMS: list[ItemSpec] = [
    ItemSpec(
        id="lap-recorder",
        name="Lap Recorder",
        category="Audio Equipment",
        description="Digital voice recorder with a lavalier microphone.",
        quantity=2,
    ),
    ItemSpec(
        id="flash-guard",
        name="Flash Guard",
        category="Photography",
        description="Diffuser for on-camera flash.",
        quantity=1,
    ),
    ItemSpec(
        id="laminator",
        name="Laminator",
        category="Office Equipment",
        description="A4 laminating machine.",
        quantity=1,
    ),
    ItemSpec(
        id="projector",
        name="Projector",
        category="Electronics",
        description="Portable HD projector with HDMI and USB inputs.",
        quantity=1,
    ),
    ItemSpec(
        id="ippt-chip-box",
        name="IPPT Chip Box (With Chips)",
        category="Training Equipment",
        description="A full box of electronic timing chips.",
        quantity=1,
    ),
]


def venue_names() -> list[str]:
    return [venue.name for venue in DEFAULT_VENUES]


def get_venue_color(venue_name: str) -> str:
    for venue in DEFAULT_VENUES:
        if venue.name == venue_name:
            return venue.color
    return DEFAULT_VENUE_COLOR
