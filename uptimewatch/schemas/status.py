"""Status overview schemas for dashboard."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class MonitorSummary(BaseModel):
    """Summary of a monitor for dashboard."""
    id: int
    name: str
    url: str
    is_active: bool
    state: str  # up, down, unknown
    last_check: Optional[datetime] = None
    response_time: Optional[int] = None
    down_since: Optional[datetime] = None


class StatusOverview(BaseModel):
    """Dashboard overview data."""
    total_monitors: int
    monitors_up: int
    monitors_down: int
    monitors_unknown: int
    monitors: List[MonitorSummary]
