"""MonitorDowntime model - contiguous down intervals."""
from sqlalchemy import Column, Integer, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from ..database import Base


class MonitorDowntime(Base):
    """A period during which a monitor was confirmed down.

    ``ended_at`` is NULL while the downtime is ongoing. At most one open
    downtime may exist per monitor; the partial unique index enforces it at
    the database level as well.
    """

    __tablename__ = "monitor_downtimes"
    __table_args__ = (
        Index("ix_monitor_downtimes_monitor_started", "monitor_id", "started_at"),
        Index(
            "uq_monitor_downtimes_open",
            "monitor_id",
            unique=True,
            sqlite_where=text("ended_at IS NULL"),
            postgresql_where=text("ended_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False)
    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    last_notification_at = Column(DateTime, nullable=True)

    # Relationships
    monitor = relationship("Monitor", back_populates="downtimes")

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def calculate_duration(self):
        """Set duration_seconds from started_at/ended_at (never negative)."""
        if self.ended_at is not None:
            self.duration_seconds = max(0, int((self.ended_at - self.started_at).total_seconds()))
