from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine, select
import logging

from .catalog import DEFAULT_ITEMS, DEFAULT_VENUES
from .config import get_settings
from .models import Item, Venue

logger = logging.getLogger(__name__)


def make_engine(database_url: str, echo: bool = False) -> Engine:
    if not database_url:
        raise ValueError("DATABASE_URL not set")
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Route handlers run in the threadpool.
        connect_args["check_same_thread"] = False
    return create_engine(database_url, echo=echo, connect_args=connect_args)


settings = get_settings()
engine = make_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)


def get_session():
    with Session(engine) as session:
        yield session


def seed_venues(session: Session) -> None:
    for spec in DEFAULT_VENUES:
        venue = session.get(Venue, spec.name)
        if venue is None:
            session.add(Venue(name=spec.name, color=spec.color))
        elif venue.color != spec.color:
            venue.color = spec.color
    session.commit()


def seed_items(session: Session) -> None:
    """Insert the configured items, but only into an empty item table."""
    if session.exec(select(Item)).first() is not None:
        return
    logger.info("Item table is empty, seeding %d items", len(DEFAULT_ITEMS))
    for spec in DEFAULT_ITEMS:
        session.add(
            Item(
                id=spec.id,
                name=spec.name,
                category=spec.category,
                description=spec.description,
                total_quantity=spec.quantity,
                available_quantity=spec.quantity,
            )
        )
    session.commit()


def init_db(target: Engine | None = None) -> None:
    target = target or engine
    SQLModel.metadata.create_all(target)
    with Session(target) as session:
        seed_venues(session)
        seed_items(session)
