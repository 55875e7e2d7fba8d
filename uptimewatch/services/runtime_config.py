"""Runtime configuration loaded from the settings table at startup."""
from dataclasses import dataclass

from ..models.settings import DEFAULT_SETTINGS


def _as_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class RuntimeConfig:
    """Settings-store values the services need, passed in explicitly."""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    webhook_url: str = ""
    check_retention_days: int = 90
    downtime_retention_days: int = 365

    @classmethod
    def from_settings(cls, values: dict) -> "RuntimeConfig":
        merged = {**DEFAULT_SETTINGS, **values}
        return cls(
            telegram_bot_token=merged.get("telegram_bot_token", ""),
            telegram_chat_id=merged.get("telegram_chat_id", ""),
            webhook_url=merged.get("webhook_url", ""),
            check_retention_days=_as_int(merged.get("check_retention_days"), 90),
            downtime_retention_days=_as_int(merged.get("downtime_retention_days"), 365),
        )


async def load_runtime_config(repository) -> RuntimeConfig:
    """Read the settings table (defaults applied) into a RuntimeConfig."""
    return RuntimeConfig.from_settings(await repository.all_settings())
