"""SiteGuard - website uptime and visual change monitoring."""

__version__ = "1.0.0"
