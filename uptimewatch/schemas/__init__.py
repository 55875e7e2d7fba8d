"""Pydantic schemas for validation and API response models."""
from .monitor import (
    MonitorCreate,
    CheckResponse,
    DowntimeResponse,
    MonitorTestResponse,
    SslResultResponse,
    DomainResultResponse,
)
from .status import (
    StatusOverview,
    MonitorSummary,
)

__all__ = [
    "MonitorCreate",
    "CheckResponse",
    "DowntimeResponse",
    "MonitorTestResponse",
    "SslResultResponse",
    "DomainResultResponse",
    "StatusOverview",
    "MonitorSummary",
]
