"""MonitorCheck model - one row per probe attempt."""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from ..database import Base


class MonitorCheck(Base):
    """Snapshot of a single probe attempt, retries included."""

    __tablename__ = "monitor_checks"
    __table_args__ = (
        Index("ix_monitor_checks_monitor_checked", "monitor_id", "checked_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(8), nullable=False)  # up, down
    response_time = Column(Integer, nullable=True)  # milliseconds
    status_code = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)  # truncated
    error_message = Column(Text, nullable=True)
    content_valid = Column(Boolean, nullable=True)  # NULL = validation disabled

    # Attached later by the SSL sweep to the latest check
    ssl_valid = Column(Boolean, nullable=True)
    ssl_issuer = Column(String, nullable=True)
    ssl_valid_from = Column(DateTime, nullable=True)
    ssl_valid_to = Column(DateTime, nullable=True)
    ssl_days_until_expiration = Column(Integer, nullable=True)
    ssl_error_message = Column(Text, nullable=True)

    checked_at = Column(DateTime, nullable=False)

    # Relationships
    monitor = relationship("Monitor", back_populates="checks")
