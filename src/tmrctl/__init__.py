"""tmrctl — work-timer session engine with multi-device sync."""

__version__ = "0.1.0"
