"""UptimeWatch - website uptime, TLS certificate and domain expiry monitoring."""

__version__ = "1.0.0"
