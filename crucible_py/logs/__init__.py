"""Lifecycle event logging."""

from .ndjson import (
    EventLog,
    EventType,
    LogEvent,
    LogSummary,
    create_event_log,
)

__all__ = [
    "EventLog",
    "EventType",
    "LogEvent",
    "LogSummary",
    "create_event_log",
]
