from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from uptimewatch.database import create_engine_for_url, create_tables
from uptimewatch.models import Monitor
from uptimewatch.repository import MonitorRepository
from uptimewatch.services.checker import CheckResult
from uptimewatch.services.notifier import Notifier
from uptimewatch.services.status_engine import MonitorStatusService

T0 = datetime(2030, 1, 1, 12, 0, 0)


class FakeClock:
    """Frozen naive-UTC clock; ``sleep`` advances it instead of waiting."""

    def __init__(self, start: datetime = T0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def set(self, value: datetime) -> None:
        self.now = value

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


class RecordingSink:
    name = "recording"

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.messages: list[str] = []

    async def send(self, text: str) -> bool:
        self.messages.append(text)
        return self.ok


class BrokenSink:
    name = "broken"

    def __init__(self):
        self.attempts = 0

    async def send(self, text: str) -> bool:
        self.attempts += 1
        raise RuntimeError("sink unavailable")


class ScriptedChecker:
    """Returns queued results in order, then ``default`` forever."""

    def __init__(self, results: Iterable[Union[str, CheckResult]] = (), default: str = "up", delay: float = 0):
        self.results = deque(results)
        self.default = default
        self.delay = delay
        self.calls: list[int] = []
        self.active = 0
        self.max_active = 0

    def push(self, *results: Union[str, CheckResult]) -> None:
        self.results.extend(results)

    async def probe(self, monitor: Monitor) -> CheckResult:
        self.calls.append(monitor.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            result = self.results.popleft() if self.results else self.default
        finally:
            self.active -= 1
        if isinstance(result, CheckResult):
            return result
        if result == "up":
            return CheckResult(status="up", response_time_ms=42, status_code=200)
        return CheckResult(status="down", response_time_ms=42, status_code=500, error_message="HTTP 500")


class FakeConnectivity:
    def __init__(self, online: bool = True):
        self.online = online
        self.calls = 0

    async def has_connectivity(self) -> bool:
        self.calls += 1
        return self.online


def build_monitor(**overrides) -> Monitor:
    """In-memory monitor for probes that never touch the database."""
    values = dict(
        id=1,
        name="Example",
        type="website",
        url="https://example.com/",
        method="GET",
        headers=None,
        parameters=None,
        enable_content_validation=False,
        expected_title=None,
        expected_content=None,
        is_active=True,
        check_interval=60,
    )
    values.update(overrides)
    return Monitor(**values)


@pytest.fixture
async def engine(tmp_path):
    db_engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'uptimewatch.db'}")
    await create_tables(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def repository(engine) -> MonitorRepository:
    return MonitorRepository(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))


@pytest.fixture
def make_monitor(repository):
    counter = {"n": 0}

    async def _make(**overrides) -> Monitor:
        counter["n"] += 1
        data = {"name": f"Monitor {counter['n']}", "url": f"https://site{counter['n']}.example.com/"}
        data.update(overrides)
        return await repository.create_monitor(data)

    return _make


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def notifier(sink, clock) -> Notifier:
    return Notifier([sink], clock=clock)


@pytest.fixture
def checker() -> ScriptedChecker:
    return ScriptedChecker()


@pytest.fixture
def connectivity() -> FakeConnectivity:
    return FakeConnectivity()


@pytest.fixture
def make_status_service(repository, checker, connectivity, notifier, clock):
    def _make(
        recovery_poll_enabled: bool = False,
        checker_override: Optional[ScriptedChecker] = None,
        notifier_override: Optional[Notifier] = None,
    ):
        return MonitorStatusService(
            repository,
            checker_override or checker,
            connectivity,
            notifier_override or notifier,
            settle_delay=3,
            recovery_interval=3,
            renotify_seconds=600,
            recovery_poll_enabled=recovery_poll_enabled,
            clock=clock,
            sleep=clock.sleep,
        )

    return _make


@pytest.fixture
async def status_service(make_status_service):
    service = make_status_service()
    yield service
    await service.shutdown()
