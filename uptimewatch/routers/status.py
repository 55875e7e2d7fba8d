"""Status overview API for dashboard."""
from fastapi import APIRouter, Depends

from ..dependencies import get_services
from ..schemas.status import StatusOverview, MonitorSummary
from ..services import Services

router = APIRouter(prefix="/api/status", tags=["status"])


@router.get("/overview", response_model=StatusOverview)
async def get_status_overview(services: Services = Depends(get_services)):
    """Get dashboard overview data."""
    repository = services.repository
    monitors = await repository.list_monitors()
    open_downtimes = await repository.open_downtimes_by_monitor()

    monitor_summaries = []
    counts = {"up": 0, "down": 0, "unknown": 0}

    for monitor in monitors:
        latest = await repository.latest_check(monitor.id)
        downtime = open_downtimes.get(monitor.id)

        # Down is defined by an open downtime, never by the last check alone
        if downtime is not None:
            state = "down"
        elif latest is None:
            state = "unknown"
        else:
            state = "up"
        counts[state] += 1

        monitor_summaries.append(MonitorSummary(
            id=monitor.id,
            name=monitor.name,
            url=monitor.url,
            is_active=monitor.is_active,
            state=state,
            last_check=latest.checked_at if latest else None,
            response_time=latest.response_time if latest else None,
            down_since=downtime.started_at if downtime else None,
        ))

    return StatusOverview(
        total_monitors=len(monitors),
        monitors_up=counts["up"],
        monitors_down=counts["down"],
        monitors_unknown=counts["unknown"],
        monitors=monitor_summaries,
    )
