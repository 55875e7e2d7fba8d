from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from conftest import T0, ScriptedChecker
from uptimewatch.services.checker import CheckResult
from uptimewatch.services.domain_checker import DomainCheckerService, DomainResult
from uptimewatch.services.runtime_config import RuntimeConfig
from uptimewatch.services.scheduler import SchedulerService, is_monitor_due
from uptimewatch.services.ssl_checker import SslCheckerService, SslResult


@pytest.fixture
def make_scheduler(repository, notifier, connectivity, clock, status_service):
    def _make(status=None, runtime_config=None, batch_size=10):
        return SchedulerService(
            repository,
            status or status_service,
            SslCheckerService(warning_days=30, clock=clock),
            DomainCheckerService(warning_days=30, clock=clock),
            notifier,
            connectivity,
            runtime_config=runtime_config or RuntimeConfig(),
            batch_size=batch_size,
            clock=clock,
        )

    return _make


async def _record_check(repository, monitor_id: int, checked_at: datetime, status: str = "up"):
    return await repository.create_check(monitor_id, CheckResult(status=status, response_time_ms=10), checked_at)


def test_is_monitor_due():
    now = T0
    assert is_monitor_due(60, None, now) is True
    assert is_monitor_due(60, now - timedelta(seconds=59), now) is False
    assert is_monitor_due(60, now - timedelta(seconds=60), now) is True
    assert is_monitor_due(300, now - timedelta(seconds=120), now) is False


@pytest.mark.asyncio
async def test_never_checked_monitor_is_checked_immediately(make_scheduler, make_monitor, repository, checker):
    monitor = await make_monitor(check_interval=60)
    scheduler = make_scheduler()

    stats = await scheduler.sweep_due_monitors()

    assert stats == {"due": 1, "checked": 1, "skipped": 0, "errors": 0}
    checks = await repository.recent_checks(monitor.id)
    assert [c.status for c in checks] == ["up"]
    assert await repository.recent_downtimes(monitor.id) == []


@pytest.mark.asyncio
async def test_sweep_selects_only_due_active_monitors(make_scheduler, make_monitor, repository, checker, clock):
    fresh = await make_monitor(check_interval=60)
    stale = await make_monitor(check_interval=60)
    never = await make_monitor(check_interval=60)
    inactive = await make_monitor(check_interval=60, is_active=False)
    await _record_check(repository, fresh.id, clock() - timedelta(seconds=30))
    await _record_check(repository, stale.id, clock() - timedelta(seconds=120))

    stats = await make_scheduler(batch_size=1).sweep_due_monitors()

    assert stats["due"] == 2
    assert stats["checked"] == 2
    assert sorted(checker.calls) == sorted([stale.id, never.id])
    assert inactive.id not in checker.calls


@pytest.mark.asyncio
async def test_sweep_skips_everything_without_connectivity(make_scheduler, make_monitor, connectivity, checker):
    await make_monitor()
    await make_monitor()
    connectivity.online = False

    stats = await make_scheduler().sweep_due_monitors()

    assert stats == {"due": 2, "checked": 0, "skipped": 2, "errors": 0}
    assert checker.calls == []


@pytest.mark.asyncio
async def test_sweep_skips_monitors_in_flight(make_scheduler, make_monitor, status_service, checker, monkeypatch):
    busy = await make_monitor()
    idle = await make_monitor()
    monkeypatch.setattr(status_service, "is_in_flight", lambda monitor_id: monitor_id == busy.id)

    stats = await make_scheduler().sweep_due_monitors()

    assert stats["skipped"] == 1
    assert checker.calls == [idle.id]


@pytest.mark.asyncio
async def test_overlapping_sweep_returns_immediately(make_scheduler, make_status_service, make_monitor):
    await make_monitor()
    slow = make_status_service(checker_override=ScriptedChecker(delay=0.05))
    scheduler = make_scheduler(status=slow)

    first, second = await asyncio.gather(scheduler.sweep_due_monitors(), scheduler.sweep_due_monitors())

    assert first["checked"] == 1
    assert second == {"due": 0, "checked": 0, "skipped": 0, "errors": 0}


@pytest.mark.asyncio
async def test_monitor_failure_is_isolated(make_scheduler, make_monitor, status_service, checker, monkeypatch):
    broken = await make_monitor()
    healthy = await make_monitor()
    original = status_service.process_check

    async def flaky(monitor):
        if monitor.id == broken.id:
            raise RuntimeError("boom")
        return await original(monitor)

    monkeypatch.setattr(status_service, "process_check", flaky)

    stats = await make_scheduler().sweep_due_monitors()

    assert stats["errors"] == 1
    assert stats["checked"] == 1
    assert checker.calls == [healthy.id]


@pytest.mark.asyncio
async def test_sweep_resumes_missing_recovery_polls(make_scheduler, make_monitor, repository, status_service, monkeypatch):
    down = await make_monitor()
    await repository.open_downtime(down.id, started_at=T0, notified_at=T0)
    resumed = []
    monkeypatch.setattr(status_service, "ensure_recovery_poll", lambda monitor_id: resumed.append(monitor_id) or True)

    await make_scheduler().sweep_due_monitors()

    assert resumed == [down.id]


@pytest.mark.asyncio
async def test_ssl_sweep_classifies_and_notifies(make_scheduler, make_monitor, repository, sink, clock, monkeypatch):
    expiring = await make_monitor(url="https://expiring.example.com")
    expired = await make_monitor(url="https://expired.example.com")
    broken = await make_monitor(url="https://broken.example.com")
    await make_monitor(url="http://plain.example.com")
    await _record_check(repository, expiring.id, clock())

    results = {
        expiring.id: SslResult(
            valid=True, issuer="Test CA", valid_to=clock() + timedelta(days=10), days_until_expiration=10
        ),
        expired.id: SslResult(
            valid=False, issuer="Test CA", valid_to=clock() - timedelta(days=1),
            days_until_expiration=0, error_message="Certificate has expired",
        ),
        broken.id: SslResult.error("Connection failed"),
    }
    scheduler = make_scheduler()

    async def fake_check(monitor):
        return results[monitor.id]

    monkeypatch.setattr(scheduler.ssl_checker, "check_certificate", fake_check)

    stats = await scheduler.sweep_ssl()

    assert stats == {"checked": 3, "expiring": 1, "expired": 1, "errors": 1}
    assert len(sink.messages) == 2
    assert any("SSL Certificate Expiring Soon" in m for m in sink.messages)
    assert any("SSL Certificate Expired" in m for m in sink.messages)
    latest = await repository.latest_check(expiring.id)
    assert latest.ssl_valid is True
    assert latest.ssl_days_until_expiration == 10
    assert latest.ssl_issuer == "Test CA"


@pytest.mark.asyncio
async def test_domain_sweep_updates_monitors(make_scheduler, make_monitor, repository, sink, clock, monkeypatch):
    healthy = await make_monitor()
    expiring = await make_monitor()
    unresolved = await make_monitor()

    results = {
        healthy.id: DomainResult(expires_at=clock() + timedelta(days=400), days_until_expiration=400, domain="a.com"),
        expiring.id: DomainResult(expires_at=clock() + timedelta(days=7), days_until_expiration=7, domain="b.com"),
        unresolved.id: DomainResult.error("Could not parse expiration date from WHOIS response", "c.com"),
    }
    scheduler = make_scheduler()

    async def fake_lookup(monitor):
        return results[monitor.id]

    monkeypatch.setattr(scheduler.domain_checker, "get_expiration", fake_lookup)

    stats = await scheduler.sweep_domains()

    assert stats == {"checked": 3, "expiring": 1, "expired": 0, "errors": 1}
    assert len(sink.messages) == 1
    assert "Domain Expiring Soon" in sink.messages[0]

    stored = await repository.get_monitor(expiring.id)
    assert stored.domain_days_until_expiration == 7
    assert stored.domain_last_checked_at == clock()
    failed = await repository.get_monitor(unresolved.id)
    assert failed.domain_error_message.startswith("Could not parse")
    assert failed.domain_expires_at is None


@pytest.mark.asyncio
async def test_cleanup_removes_only_old_records(make_scheduler, make_monitor, repository, clock):
    monitor = await make_monitor()
    now = clock()
    await _record_check(repository, monitor.id, now - timedelta(days=100))
    await _record_check(repository, monitor.id, now - timedelta(days=10))

    old = await repository.open_downtime(monitor.id, started_at=now - timedelta(days=420), notified_at=None)
    await repository.close_downtime(old.id, now - timedelta(days=400))
    recent = await repository.open_downtime(monitor.id, started_at=now - timedelta(days=20), notified_at=None)
    await repository.close_downtime(recent.id, now - timedelta(days=10))
    await repository.open_downtime(monitor.id, started_at=now - timedelta(days=500), notified_at=None)

    scheduler = make_scheduler(runtime_config=RuntimeConfig(check_retention_days=90, downtime_retention_days=365))

    assert await scheduler.cleanup_old_records(dry_run=True) == {"checks": 1, "downtimes": 1}
    assert len(await repository.recent_checks(monitor.id)) == 2

    assert await scheduler.cleanup_old_records() == {"checks": 1, "downtimes": 1}
    assert len(await repository.recent_checks(monitor.id)) == 1
    remaining = await repository.recent_downtimes(monitor.id)
    assert len(remaining) == 2
    assert any(d.ended_at is None for d in remaining)


@pytest.mark.asyncio
async def test_start_registers_jobs(make_scheduler):
    scheduler = make_scheduler()
    scheduler.start()
    try:
        job_ids = {job.id for job in scheduler.scheduler.get_jobs()}
        assert job_ids == {"sweep_due_monitors", "sweep_ssl", "sweep_domains", "cleanup_old_records"}
    finally:
        scheduler.stop()


@pytest.mark.asyncio
async def test_domain_sweep_notifies_expired_domain(make_scheduler, make_monitor, repository, sink, clock, monkeypatch):
    lapsed = await make_monitor()
    scheduler = make_scheduler()

    async def fake_lookup(monitor):
        return DomainResult(expires_at=clock() - timedelta(days=3), days_until_expiration=0, domain="lapsed.com")

    monkeypatch.setattr(scheduler.domain_checker, "get_expiration", fake_lookup)

    stats = await scheduler.sweep_domains()

    assert stats == {"checked": 1, "expiring": 0, "expired": 1, "errors": 0}
    assert len(sink.messages) == 1
    assert "Domain Expired" in sink.messages[0]
    assert "Domain: lapsed.com" in sink.messages[0]
    stored = await repository.get_monitor(lapsed.id)
    assert stored.domain_days_until_expiration == 0
