"""Providers for a publish/subscribe broker: logging, metering, no-op storage and stats sinks."""

__version__ = "0.1.0"