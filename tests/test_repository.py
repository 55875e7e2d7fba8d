from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError

from conftest import T0
from uptimewatch.models import MonitorDowntime
from uptimewatch.services.checker import CheckResult
from uptimewatch.utils.db_utils import retry_on_lock


@pytest.mark.asyncio
async def test_create_monitor_applies_defaults(make_monitor):
    monitor = await make_monitor()

    assert monitor.id is not None
    assert monitor.method == "GET"
    assert monitor.check_interval == 60
    assert monitor.is_active is True
    assert monitor.is_https is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"check_interval": 10},
        {"check_interval": 7200},
        {"method": "DELETE"},
        {"type": "dns"},
        {"enable_content_validation": True},
    ],
)
@pytest.mark.asyncio
async def test_create_monitor_rejects_invalid_input(make_monitor, overrides):
    with pytest.raises(ValidationError):
        await make_monitor(**overrides)


@pytest.mark.asyncio
async def test_only_one_open_downtime_per_monitor(make_monitor, repository):
    monitor = await make_monitor()
    await repository.open_downtime(monitor.id, started_at=T0, notified_at=T0)

    with pytest.raises(IntegrityError):
        await repository.open_downtime(monitor.id, started_at=T0, notified_at=T0)


@pytest.mark.asyncio
async def test_close_downtime_sets_duration(make_monitor, repository):
    monitor = await make_monitor()
    downtime = await repository.open_downtime(monitor.id, started_at=T0, notified_at=T0)

    closed = await repository.close_downtime(downtime.id, T0 + timedelta(seconds=95, microseconds=700))

    assert closed.duration_seconds == 95
    assert closed.is_open is False
    assert await repository.get_open_downtime(monitor.id) is None


def test_duration_is_never_negative():
    downtime = MonitorDowntime(started_at=T0, ended_at=T0 - timedelta(seconds=5))
    downtime.calculate_duration()
    assert downtime.duration_seconds == 0


@pytest.mark.asyncio
async def test_attach_ssl_without_checks_is_discarded(make_monitor, repository):
    from uptimewatch.services.ssl_checker import SslResult

    monitor = await make_monitor()

    assert await repository.attach_ssl_to_latest_check(monitor.id, SslResult(valid=True)) is False


@pytest.mark.asyncio
async def test_latest_check_per_monitor(make_monitor, repository):
    monitor = await make_monitor()
    await repository.create_check(monitor.id, CheckResult(status="down"), T0)
    await repository.create_check(monitor.id, CheckResult(status="up"), T0 + timedelta(seconds=3))

    latest = await repository.latest_check(monitor.id)
    assert latest.status == "up"

    rows = await repository.active_monitors_with_last_check()
    assert rows == [(monitor.id, 60, T0 + timedelta(seconds=3))]


@pytest.mark.asyncio
async def test_settings_store_overrides_defaults(repository):
    assert await repository.get_setting("check_retention_days") == "90"

    await repository.set_setting("check_retention_days", "30")
    await repository.set_setting("webhook_url", "https://hooks.example.com")

    values = await repository.all_settings()
    assert values["check_retention_days"] == "30"
    assert values["webhook_url"] == "https://hooks.example.com"
    assert values["downtime_retention_days"] == "365"


@pytest.mark.asyncio
async def test_retry_on_lock_retries_transient_errors():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))
        return "ok"

    assert await retry_on_lock(flaky, base_delay=0) == "ok"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_retry_on_lock_raises_other_errors():
    async def broken():
        raise OperationalError("SELECT", {}, Exception("no such table: monitors"))

    with pytest.raises(OperationalError):
        await retry_on_lock(broken, base_delay=0)
