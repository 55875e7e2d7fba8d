"""Database models."""
from .settings import Setting
from .monitor import Monitor
from .check import MonitorCheck
from .downtime import MonitorDowntime

__all__ = ["Setting", "Monitor", "MonitorCheck", "MonitorDowntime"]
