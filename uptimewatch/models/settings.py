"""Settings model - key-value store for runtime configuration."""
from sqlalchemy import Column, String, DateTime

from ..database import Base
from ..utils.clock import utcnow


class Setting(Base):
    """Global settings stored as key-value pairs."""

    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# Default settings
DEFAULT_SETTINGS = {
    # Notification credentials (opaque to the core)
    "telegram_bot_token": "",
    "telegram_chat_id": "",
    "webhook_url": "",

    # Retention
    "check_retention_days": "90",
    "downtime_retention_days": "365",
}
