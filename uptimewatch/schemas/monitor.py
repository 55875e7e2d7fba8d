"""Monitor schemas for validation and API responses."""
from datetime import datetime
from typing import Dict, Literal, Optional
from pydantic import BaseModel, Field, model_validator


class MonitorCreate(BaseModel):
    """Schema for creating a new monitor.

    The management interface owns monitor CRUD; this schema is the single
    place where creation-time invariants are enforced.
    """
    user_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=255)
    type: Literal["website", "ip"] = "website"
    url: str = Field(..., min_length=1)
    method: Literal["GET", "POST"] = "GET"
    headers: Optional[Dict[str, str]] = None
    parameters: Optional[Dict[str, str]] = None
    enable_content_validation: bool = False
    expected_title: Optional[str] = Field(None, max_length=255)
    expected_content: Optional[str] = None
    is_active: bool = True
    check_interval: int = Field(default=60, ge=30, le=3600)

    @model_validator(mode="after")
    def require_expectation_for_validation(self):
        if self.enable_content_validation and not (self.expected_title or self.expected_content):
            raise ValueError(
                "Content validation requires an expected title or expected content"
            )
        return self


class CheckResponse(BaseModel):
    """A stored probe attempt."""
    id: int
    status: str  # up, down
    response_time: Optional[int] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    content_valid: Optional[bool] = None
    ssl_valid: Optional[bool] = None
    ssl_issuer: Optional[str] = None
    ssl_valid_to: Optional[datetime] = None
    ssl_days_until_expiration: Optional[int] = None
    ssl_error_message: Optional[str] = None
    checked_at: datetime

    class Config:
        from_attributes = True


class DowntimeResponse(BaseModel):
    """A downtime interval; ended_at is None while ongoing."""
    id: int
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    last_notification_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MonitorTestResponse(BaseModel):
    """Response from probing a monitor on demand."""
    status: str
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    content_valid: Optional[bool] = None


class SslResultResponse(BaseModel):
    """Certificate inspection result."""
    valid: bool
    issuer: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    days_until_expiration: Optional[int] = None
    error_message: Optional[str] = None
    expiring_soon: bool = False


class DomainResultResponse(BaseModel):
    """Domain registration expiry result."""
    domain: Optional[str] = None
    expires_at: Optional[datetime] = None
    days_until_expiration: Optional[int] = None
    error_message: Optional[str] = None
    expiring_soon: bool = False
