from dotenv import load_dotenv
from zoneinfo import ZoneInfo
import os

load_dotenv()


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings:
    def __init__(self) -> None:
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./venueflow.db")
        self.SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("1", "true", "yes")
        self.AUTH_SECRET_KEY = os.getenv("AUTH_SECRET_KEY")
        self.AUTH_ALGORITHM = os.getenv("AUTH_ALGORITHM", "HS256")
        self.AUTH_AUDIENCE = os.getenv("AUTH_AUDIENCE") or None
        self.AUTH_ISSUER = os.getenv("AUTH_ISSUER") or None
        self.ADMIN_UIDS = set(_split(os.getenv("ADMIN_UIDS")))
        self.DISPLAY_TIMEZONE = os.getenv("DISPLAY_TIMEZONE", "Asia/Singapore")
        self.MAIL_API_URL = os.getenv("MAIL_API_URL")
        self.MAIL_API_KEY = os.getenv("MAIL_API_KEY")
        self.MAIL_SENDER = os.getenv("MAIL_SENDER", "VenueFlow <no-reply@venueflow.local>")
        self.MAIL_TIMEOUT_SECONDS = float(os.getenv("MAIL_TIMEOUT_SECONDS", "10"))
        self.CORS_ORIGINS = _split(os.getenv("CORS_ORIGINS", "http://localhost:3000"))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def display_zone(self) -> ZoneInfo:
        return ZoneInfo(self.DISPLAY_TIMEZONE)


settings = Settings()


def get_settings() -> Settings:
    return settings
