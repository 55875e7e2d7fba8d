"""FastAPI dependencies."""
from fastapi import HTTPException, Request

from .models import Monitor
from .services import Services


def get_services(request: Request) -> Services:
    """The service graph wired during application startup."""
    return request.app.state.services


async def get_monitor_or_404(monitor_id: int, request: Request) -> Monitor:
    monitor = await get_services(request).repository.get_monitor(monitor_id)
    if not monitor:
        raise HTTPException(status_code=404, detail="Monitor not found")
    return monitor
