"""Monitor result and on-demand probe endpoints."""
from typing import List

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_monitor_or_404, get_services
from ..models import Monitor
from ..schemas.monitor import (
    CheckResponse,
    DowntimeResponse,
    MonitorTestResponse,
    SslResultResponse,
    DomainResultResponse,
)
from ..services import Services

router = APIRouter(prefix="/api/monitors", tags=["monitors"])


@router.get("/{monitor_id}/checks", response_model=List[CheckResponse])
async def get_monitor_checks(
    limit: int = Query(default=50, ge=1, le=500),
    monitor: Monitor = Depends(get_monitor_or_404),
    services: Services = Depends(get_services),
):
    """Recent checks, newest first."""
    return await services.repository.recent_checks(monitor.id, limit=limit)


@router.get("/{monitor_id}/downtimes", response_model=List[DowntimeResponse])
async def get_monitor_downtimes(
    limit: int = Query(default=50, ge=1, le=500),
    monitor: Monitor = Depends(get_monitor_or_404),
    services: Services = Depends(get_services),
):
    """Recent downtimes, newest first."""
    return await services.repository.recent_downtimes(monitor.id, limit=limit)


@router.post("/{monitor_id}/test", response_model=MonitorTestResponse)
async def test_monitor(
    monitor: Monitor = Depends(get_monitor_or_404),
    services: Services = Depends(get_services),
):
    """Run a single HTTP probe without persisting the result."""
    result = await services.checker.probe(monitor)
    return MonitorTestResponse(
        status=result.status,
        response_time_ms=result.response_time_ms,
        status_code=result.status_code,
        error_message=result.error_message,
        content_valid=result.content_valid,
    )


@router.post("/{monitor_id}/ssl", response_model=SslResultResponse)
async def check_monitor_ssl(
    monitor: Monitor = Depends(get_monitor_or_404),
    services: Services = Depends(get_services),
):
    """Inspect the monitor's certificate without persisting the result."""
    result = await services.ssl_checker.check_certificate(monitor)
    return SslResultResponse(
        valid=result.valid,
        issuer=result.issuer,
        valid_from=result.valid_from,
        valid_to=result.valid_to,
        days_until_expiration=result.days_until_expiration,
        error_message=result.error_message,
        expiring_soon=result.valid and services.ssl_checker.is_expiring_soon(result.days_until_expiration),
    )


@router.post("/{monitor_id}/domain", response_model=DomainResultResponse)
async def check_monitor_domain(
    monitor: Monitor = Depends(get_monitor_or_404),
    services: Services = Depends(get_services),
):
    """Look up the registration expiry of the monitor's domain."""
    result = await services.domain_checker.get_expiration(monitor)
    return DomainResultResponse(
        domain=result.domain,
        expires_at=result.expires_at,
        days_until_expiration=result.days_until_expiration,
        error_message=result.error_message,
        expiring_soon=bool(result.days_until_expiration) and services.domain_checker.is_expiring_soon(
            result.days_until_expiration
        ),
    )
