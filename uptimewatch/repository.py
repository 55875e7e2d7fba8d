"""Data access for monitors, checks, downtimes and settings.

Services read and write through this class only. Every method opens its own
short-lived session so callers running concurrently never share one.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import Monitor, MonitorCheck, MonitorDowntime, Setting
from .models.settings import DEFAULT_SETTINGS
from .schemas.monitor import MonitorCreate
from .utils.db_utils import retry_on_lock

if TYPE_CHECKING:
    from .services.checker import CheckResult
    from .services.domain_checker import DomainResult
    from .services.ssl_checker import SslResult

DELETE_BATCH_SIZE = 1000


class MonitorRepository:
    """Async SQLAlchemy repository."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from .database import async_session
            session_factory = async_session
        self._session_factory = session_factory

    def session(self) -> AsyncSession:
        return self._session_factory()

    async def create_monitor(self, data: Union[MonitorCreate, dict]) -> Monitor:
        """Validate and insert a monitor (used by the management interface)."""
        if not isinstance(data, MonitorCreate):
            data = MonitorCreate(**data)
        async with self.session() as session:
            monitor = Monitor(**data.model_dump())
            session.add(monitor)
            await retry_on_lock(session.commit)
            await session.refresh(monitor)
            return monitor

    async def get_monitor(self, monitor_id: int) -> Optional[Monitor]:
        async with self.session() as session:
            return await session.get(Monitor, monitor_id)

    async def list_monitors(self) -> List[Monitor]:
        async with self.session() as session:
            result = await session.execute(select(Monitor).order_by(Monitor.name))
            return list(result.scalars().all())

    async def list_active_monitors(self) -> List[Monitor]:
        async with self.session() as session:
            result = await session.execute(
                select(Monitor).where(Monitor.is_active.is_(True)).order_by(Monitor.id)
            )
            return list(result.scalars().all())

    async def list_active_https_monitors(self) -> List[Monitor]:
        async with self.session() as session:
            result = await session.execute(
                select(Monitor)
                .where(
                    Monitor.is_active.is_(True),
                    func.lower(Monitor.url).like("https://%"),
                )
                .order_by(Monitor.id)
            )
            return list(result.scalars().all())

    async def active_monitors_with_last_check(self) -> List[Tuple[int, int, Optional[datetime]]]:
        """Return (monitor_id, check_interval, last_checked_at) for active monitors."""
        async with self.session() as session:
            result = await session.execute(
                select(
                    Monitor.id,
                    Monitor.check_interval,
                    func.max(MonitorCheck.checked_at).label("last_checked"),
                )
                .outerjoin(MonitorCheck, Monitor.id == MonitorCheck.monitor_id)
                .where(Monitor.is_active.is_(True))
                .group_by(Monitor.id, Monitor.check_interval)
                .order_by(Monitor.id)
            )
            return [(row[0], row[1], row[2]) for row in result.fetchall()]

    async def active_monitor_ids_with_open_downtime(self) -> List[int]:
        async with self.session() as session:
            result = await session.execute(
                select(MonitorDowntime.monitor_id)
                .join(Monitor, Monitor.id == MonitorDowntime.monitor_id)
                .where(
                    MonitorDowntime.ended_at.is_(None),
                    Monitor.is_active.is_(True),
                )
            )
            return [row[0] for row in result.fetchall()]

    async def update_domain_fields(
        self,
        monitor_id: int,
        result: "DomainResult",
        checked_at: datetime,
    ):
        async with self.session() as session:
            await session.execute(
                update(Monitor)
                .where(Monitor.id == monitor_id)
                .values(
                    domain_expires_at=result.expires_at,
                    domain_days_until_expiration=result.days_until_expiration,
                    domain_error_message=result.error_message,
                    domain_last_checked_at=checked_at,
                )
            )
            await retry_on_lock(session.commit)

    async def create_check(
        self,
        monitor_id: int,
        result: "CheckResult",
        checked_at: datetime,
    ) -> MonitorCheck:
        async with self.session() as session:
            check = MonitorCheck(
                monitor_id=monitor_id,
                status=result.status,
                response_time=result.response_time_ms,
                status_code=result.status_code,
                response_body=result.body_excerpt,
                error_message=result.error_message,
                content_valid=result.content_valid,
                checked_at=checked_at,
            )
            session.add(check)
            await retry_on_lock(session.commit)
            return check

    async def latest_check(self, monitor_id: int) -> Optional[MonitorCheck]:
        async with self.session() as session:
            result = await session.execute(
                select(MonitorCheck)
                .where(MonitorCheck.monitor_id == monitor_id)
                .order_by(MonitorCheck.checked_at.desc(), MonitorCheck.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def recent_checks(self, monitor_id: int, limit: int = 50) -> List[MonitorCheck]:
        async with self.session() as session:
            result = await session.execute(
                select(MonitorCheck)
                .where(MonitorCheck.monitor_id == monitor_id)
                .order_by(MonitorCheck.checked_at.desc(), MonitorCheck.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def attach_ssl_to_latest_check(self, monitor_id: int, ssl_result: "SslResult") -> bool:
        """Write certificate fields onto the newest check.

        Returns False when the monitor has no checks yet (result discarded).
        """
        async with self.session() as session:
            result = await session.execute(
                select(MonitorCheck)
                .where(MonitorCheck.monitor_id == monitor_id)
                .order_by(MonitorCheck.checked_at.desc(), MonitorCheck.id.desc())
                .limit(1)
            )
            check = result.scalar_one_or_none()
            if check is None:
                return False

            check.ssl_valid = ssl_result.valid
            check.ssl_issuer = ssl_result.issuer
            check.ssl_valid_from = ssl_result.valid_from
            check.ssl_valid_to = ssl_result.valid_to
            check.ssl_days_until_expiration = ssl_result.days_until_expiration
            check.ssl_error_message = ssl_result.error_message
            await retry_on_lock(session.commit)
            return True

    async def count_checks_before(self, cutoff: datetime) -> int:
        async with self.session() as session:
            result = await session.execute(
                select(func.count(MonitorCheck.id)).where(MonitorCheck.checked_at < cutoff)
            )
            return int(result.scalar_one())

    async def delete_checks_before(self, cutoff: datetime, batch_size: int = DELETE_BATCH_SIZE) -> int:
        """Delete checks older than cutoff in batches; returns the number removed."""
        return await self._delete_in_batches(
            select(MonitorCheck.id).where(MonitorCheck.checked_at < cutoff),
            MonitorCheck,
            batch_size,
        )

    async def get_open_downtime(self, monitor_id: int) -> Optional[MonitorDowntime]:
        async with self.session() as session:
            result = await session.execute(
                select(MonitorDowntime)
                .where(
                    MonitorDowntime.monitor_id == monitor_id,
                    MonitorDowntime.ended_at.is_(None),
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def open_downtime(
        self,
        monitor_id: int,
        started_at: datetime,
        notified_at: datetime,
    ) -> MonitorDowntime:
        async with self.session() as session:
            downtime = MonitorDowntime(
                monitor_id=monitor_id,
                started_at=started_at,
                last_notification_at=notified_at,
            )
            session.add(downtime)
            await retry_on_lock(session.commit)
            return downtime

    async def mark_downtime_notified(self, downtime_id: int, notified_at: datetime):
        async with self.session() as session:
            await session.execute(
                update(MonitorDowntime)
                .where(MonitorDowntime.id == downtime_id)
                .values(last_notification_at=notified_at)
            )
            await retry_on_lock(session.commit)

    async def close_downtime(self, downtime_id: int, ended_at: datetime) -> MonitorDowntime:
        async with self.session() as session:
            downtime = await session.get(MonitorDowntime, downtime_id)
            downtime.ended_at = ended_at
            downtime.calculate_duration()
            await retry_on_lock(session.commit)
            return downtime

    async def recent_downtimes(self, monitor_id: int, limit: int = 50) -> List[MonitorDowntime]:
        async with self.session() as session:
            result = await session.execute(
                select(MonitorDowntime)
                .where(MonitorDowntime.monitor_id == monitor_id)
                .order_by(MonitorDowntime.started_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def open_downtimes_by_monitor(self) -> Dict[int, MonitorDowntime]:
        async with self.session() as session:
            result = await session.execute(
                select(MonitorDowntime).where(MonitorDowntime.ended_at.is_(None))
            )
            return {d.monitor_id: d for d in result.scalars().all()}

    async def count_closed_downtimes_before(self, cutoff: datetime) -> int:
        async with self.session() as session:
            result = await session.execute(
                select(func.count(MonitorDowntime.id)).where(
                    MonitorDowntime.ended_at.is_not(None),
                    MonitorDowntime.ended_at < cutoff,
                )
            )
            return int(result.scalar_one())

    async def delete_closed_downtimes_before(
        self,
        cutoff: datetime,
        batch_size: int = DELETE_BATCH_SIZE,
    ) -> int:
        """Delete downtimes that ended before cutoff; open downtimes are kept."""
        return await self._delete_in_batches(
            select(MonitorDowntime.id).where(
                MonitorDowntime.ended_at.is_not(None),
                MonitorDowntime.ended_at < cutoff,
            ),
            MonitorDowntime,
            batch_size,
        )

    async def _delete_in_batches(self, id_query, model, batch_size: int) -> int:
        deleted = 0
        while True:
            async with self.session() as session:
                result = await session.execute(id_query.limit(batch_size))
                ids = [row[0] for row in result.fetchall()]
                if not ids:
                    return deleted
                await session.execute(delete(model).where(model.id.in_(ids)))
                await retry_on_lock(session.commit)
                deleted += len(ids)

    async def all_settings(self) -> Dict[str, str]:
        """All settings, stored values overriding the defaults."""
        async with self.session() as session:
            result = await session.execute(select(Setting))
            settings_dict = dict(DEFAULT_SETTINGS)
            for setting in result.scalars().all():
                settings_dict[setting.key] = setting.value
            return settings_dict

    async def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        async with self.session() as session:
            setting = await session.get(Setting, key)
            if setting is not None:
                return setting.value
        return DEFAULT_SETTINGS.get(key, default)

    async def set_setting(self, key: str, value: str):
        async with self.session() as session:
            setting = await session.get(Setting, key)
            if setting is None:
                session.add(Setting(key=key, value=value))
            else:
                setting.value = value
            await retry_on_lock(session.commit)
