import os

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("DISPLAY_TIMEZONE", "Asia/Singapore")

from .app import app
from .auth import CurrentUser, get_current_user
from .changefeed import ChangeFeed, get_change_feed
from .database import get_session, init_db, make_engine
from .notifications import NotificationResult, get_notifier


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, to, subject, html_body):
        self.sent.append({"to": to, "subject": subject, "html": html_body})
        return NotificationResult(
            success=True, message="recorded", message_id=f"msg-{len(self.sent)}"
        )


class RecordingFeed(ChangeFeed):
    def __init__(self):
        super().__init__()
        self.published = []

    def publish(self, change):
        self.published.append(change)
        super().publish(change)


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def feed():
    return RecordingFeed()


@pytest.fixture
def client(engine, notifier, feed):
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_change_feed] = lambda: feed
    yield TestClient(app)
    app.dependency_overrides = {}


@pytest.fixture
def user():
    return CurrentUser(uid="user-1", display_name="John Doe", email="john@doe.com")


@pytest.fixture
def other_user():
    return CurrentUser(uid="user-2", display_name="Jane Doe", email="jane@doe.com")


@pytest.fixture
def admin():
    return CurrentUser(
        uid="admin-1",
        display_name="Admin",
        email="admin@venueflow.local",
        is_admin=True,
    )


@pytest.fixture
def login_as():
    def _login(current_user):
        app.dependency_overrides[get_current_user] = lambda: current_user

    return _login


@pytest.fixture
def logout():
    def _logout():
        app.dependency_overrides.pop(get_current_user, None)

    return _logout
