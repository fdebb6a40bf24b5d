"""NDJSON lifecycle event log.

Provides structured NDJSON event logging with:
- One log file per app and stage
- Event type tracking and counts
- Stream and file output modes
"""

import json
from datetime import datetime, timezone
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, TextIO, Union
from enum import Enum


class EventType(str, Enum):
    """Lifecycle event types."""
    APP_START = "app.start"
    APP_SUCCESS = "app.success"
    APP_ERROR = "app.error"
    RESOURCE_START = "resource.start"
    RESOURCE_SUCCESS = "resource.success"
    RESOURCE_SKIP = "resource.skip"
    RESOURCE_READ = "resource.read"
    RESOURCE_ERROR = "resource.error"
    SCOPE_FAILED = "scope.failed"


@dataclass
class LogEvent:
    """A single log event."""
    timestamp: str
    event_type: str
    app: str
    stage: str
    payload: Dict[str, Any]
    fqn: Optional[str] = None
    kind: Optional[str] = None

    def to_ndjson(self) -> str:
        """Serialize to NDJSON line."""
        data = {
            "ts": self.timestamp,
            "type": self.event_type,
            "app": self.app,
            "stage": self.stage,
            "payload": self.payload,
        }
        if self.fqn:
            data["fqn"] = self.fqn
        if self.kind:
            data["kind"] = self.kind
        return json.dumps(data, separators=(',', ':'))


@dataclass
class LogSummary:
    """Summary statistics for a log file."""
    app: str
    stage: str
    total_events: int = 0
    event_counts: Dict[str, int] = field(default_factory=dict)
    first_timestamp: Optional[str] = None
    last_timestamp: Optional[str] = None
    resources_applied: int = 0
    resources_skipped: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app": self.app,
            "stage": self.stage,
            "total_events": self.total_events,
            "event_counts": self.event_counts,
            "first_timestamp": self.first_timestamp,
            "last_timestamp": self.last_timestamp,
            "resources_applied": self.resources_applied,
            "resources_skipped": self.resources_skipped,
            "errors": self.errors,
        }


class EventLog:
    """NDJSON event log for one app/stage.

    Writes events to:
    - {base_dir}/logs/{app}-{stage}.ndjson
    - {base_dir}/logs/{app}-{stage}.summary.json
    """

    def __init__(
        self,
        app: str,
        stage: str,
        base_dir: Union[str, Path] = ".crucible",
        stream: Optional[TextIO] = None,
    ):
        self.app = app
        self.stage = stage
        self.base_dir = Path(base_dir)
        self.stream = stream

        self.summary = LogSummary(app=app, stage=stage)
        self._file: Optional[TextIO] = None

        self._init_log_dir()

    def _init_log_dir(self) -> None:
        """Create log directory structure."""
        log_dir = self.base_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        self.log_path = log_dir / f"{self.app}-{self.stage}.ndjson"
        self.summary_path = log_dir / f"{self.app}-{self.stage}.summary.json"

    def _open_file(self) -> TextIO:
        """Open log file for appending."""
        if self._file is None:
            self._file = open(self.log_path, 'a', encoding='utf-8')
        return self._file

    def log(
        self,
        event_type: Union[EventType, str],
        payload: Dict[str, Any],
        fqn: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> None:
        """Log an event."""
        event = LogEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event_type=EventType(event_type).value,
            app=self.app,
            stage=self.stage,
            payload={k: self._safe_serialize(v) for k, v in payload.items()},
            fqn=fqn,
            kind=kind,
        )

        self._update_summary(event)

        line = event.to_ndjson() + "\n"

        if self.stream:
            self.stream.write(line)
            self.stream.flush()

        f = self._open_file()
        f.write(line)
        f.flush()

    def _update_summary(self, event: LogEvent) -> None:
        """Update summary statistics."""
        self.summary.total_events += 1
        self.summary.event_counts[event.event_type] = (
            self.summary.event_counts.get(event.event_type, 0) + 1
        )

        if self.summary.first_timestamp is None:
            self.summary.first_timestamp = event.timestamp
        self.summary.last_timestamp = event.timestamp

        if event.event_type == EventType.RESOURCE_SUCCESS.value:
            self.summary.resources_applied += 1
        elif event.event_type == EventType.RESOURCE_SKIP.value:
            self.summary.resources_skipped += 1
        elif event.event_type in (
            EventType.RESOURCE_ERROR.value,
            EventType.APP_ERROR.value,
            EventType.SCOPE_FAILED.value,
        ):
            self.summary.errors += 1

    def _safe_serialize(self, value: Any) -> Any:
        """Safely serialize a value for logging."""
        try:
            json.dumps(value)
            return value
        except (TypeError, ValueError):
            return str(value)

    def write_summary(self) -> None:
        """Write summary file."""
        with open(self.summary_path, 'w', encoding='utf-8') as f:
            json.dump(self.summary.to_dict(), f, indent=2)

    def close(self) -> None:
        """Close log and write final summary."""
        self.write_summary()
        if self._file:
            self._file.close()
            self._file = None


def create_event_log(
    app: str,
    stage: str,
    base_dir: Union[str, Path] = ".crucible",
    stream: Optional[TextIO] = None,
) -> EventLog:
    """Create an event log for an app/stage."""
    return EventLog(app, stage, base_dir, stream=stream)
