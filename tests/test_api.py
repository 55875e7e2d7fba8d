from __future__ import annotations

import httpx
import pytest

from conftest import T0
from uptimewatch.config import Settings
from uptimewatch.main import create_app
from uptimewatch.services import create_services
from uptimewatch.services.checker import CheckerService, CheckResult


@pytest.fixture
def services(repository):
    wired = create_services(Settings(render_enabled=False), repository=repository, recovery_poll_enabled=False)
    wired.checker = CheckerService(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<title>OK</title>"))
    )
    return wired


@pytest.fixture
async def client(services):
    app = create_app(services=services, start_scheduler=False)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as http:
        yield http


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_status_overview(client, make_monitor, repository):
    fresh = await make_monitor(name="A fresh")
    healthy = await make_monitor(name="B healthy")
    broken = await make_monitor(name="C broken")
    await repository.create_check(healthy.id, CheckResult(status="up", response_time_ms=120), T0)
    await repository.create_check(broken.id, CheckResult(status="down", response_time_ms=30), T0)
    await repository.open_downtime(broken.id, started_at=T0, notified_at=T0)

    response = await client.get("/api/status/overview")

    assert response.status_code == 200
    body = response.json()
    assert body["total_monitors"] == 3
    assert (body["monitors_up"], body["monitors_down"], body["monitors_unknown"]) == (1, 1, 1)
    states = {m["id"]: m for m in body["monitors"]}
    assert states[fresh.id]["state"] == "unknown"
    assert states[healthy.id]["state"] == "up"
    assert states[healthy.id]["response_time"] == 120
    assert states[broken.id]["state"] == "down"
    assert states[broken.id]["down_since"] == "2030-01-01T12:00:00"


@pytest.mark.asyncio
async def test_checks_and_downtimes(client, make_monitor, repository):
    monitor = await make_monitor()
    for minute in range(3):
        await repository.create_check(
            monitor.id, CheckResult(status="up", response_time_ms=minute), T0.replace(minute=minute)
        )
    await repository.open_downtime(monitor.id, started_at=T0, notified_at=T0)

    checks = (await client.get(f"/api/monitors/{monitor.id}/checks", params={"limit": 2})).json()
    downtimes = (await client.get(f"/api/monitors/{monitor.id}/downtimes")).json()

    assert [c["response_time"] for c in checks] == [2, 1]
    assert len(downtimes) == 1
    assert downtimes[0]["ended_at"] is None


@pytest.mark.asyncio
async def test_unknown_monitor_is_404(client):
    for method, path in [
        ("GET", "/api/monitors/999/checks"),
        ("GET", "/api/monitors/999/downtimes"),
        ("POST", "/api/monitors/999/test"),
        ("POST", "/api/monitors/999/ssl"),
        ("POST", "/api/monitors/999/domain"),
    ]:
        response = await client.request(method, path)
        assert response.status_code == 404, path


@pytest.mark.asyncio
async def test_probe_endpoint_does_not_persist(client, make_monitor, repository):
    monitor = await make_monitor()

    response = await client.post(f"/api/monitors/{monitor.id}/test")

    assert response.status_code == 200
    assert response.json()["status"] == "up"
    assert response.json()["status_code"] == 200
    assert await repository.recent_checks(monitor.id) == []


@pytest.mark.asyncio
async def test_ssl_endpoint_rejects_plain_http(client, make_monitor):
    monitor = await make_monitor(url="http://plain.example.com")

    body = (await client.post(f"/api/monitors/{monitor.id}/ssl")).json()

    assert body["valid"] is False
    assert body["error_message"] == "URL is not HTTPS"
    assert body["expiring_soon"] is False


@pytest.mark.asyncio
async def test_domain_endpoint_for_ip_monitor(client, make_monitor):
    monitor = await make_monitor(type="ip", url="http://10.0.0.5")

    body = (await client.post(f"/api/monitors/{monitor.id}/domain")).json()

    assert body["error_message"] == "Could not extract domain from URL"
    assert body["expiring_soon"] is False
