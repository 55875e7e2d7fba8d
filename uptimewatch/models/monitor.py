"""Monitor model - websites and hosts being watched."""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, JSON
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.clock import utcnow


class Monitor(Base):
    """A monitored target - a website URL or an IP/host."""

    __tablename__ = "monitors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True, index=True)  # Owner in the management interface
    name = Column(String(255), nullable=False)
    type = Column(String(16), nullable=False, default="website")  # website, ip
    url = Column(String, nullable=False)
    method = Column(String(8), nullable=False, default="GET")  # GET, POST
    headers = Column(JSON, nullable=True)  # {"Header-Name": "value"}
    parameters = Column(JSON, nullable=True)  # query string for GET, body for POST
    enable_content_validation = Column(Boolean, nullable=False, default=False)
    expected_title = Column(String(255), nullable=True)
    expected_content = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    check_interval = Column(Integer, nullable=False, default=60)  # seconds, 30-3600

    # Written by the domain expiration sweep
    domain_expires_at = Column(DateTime, nullable=True)
    domain_days_until_expiration = Column(Integer, nullable=True)
    domain_error_message = Column(Text, nullable=True)
    domain_last_checked_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    checks = relationship(
        "MonitorCheck",
        back_populates="monitor",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    downtimes = relationship(
        "MonitorDowntime",
        back_populates="monitor",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_https(self) -> bool:
        return (self.url or "").lower().startswith("https://")
