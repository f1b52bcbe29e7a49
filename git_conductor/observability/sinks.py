"""
Observability sinks for metric and audit events.

Two implementations of :class:`~git_conductor.providers.base.ObservabilitySink`
ship with the engine:

- :class:`LoggingSink` forwards every event to structlog.
- :class:`JsonlFileSink` appends events as JSON lines to a file.

:class:`FanOutSink` lets both be used at once.

JSONL Format:
    One JSON object per line::

        {"event_type": "audit", "recorded_at": "2024-01-15T10:30:00+00:00",
         "payload": {"workflow_id": "...", "stage": "merging", ...}}
"""

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from git_conductor.providers.base import ObservabilitySink

log = structlog.get_logger(__name__)


class LoggingSink(ObservabilitySink):
    """Emit events as structured log lines."""

    def __init__(self, event_name: str = "observability_event") -> None:
        self.event_name = event_name

    async def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        log.info(self.event_name, event_type=event_type, **payload)


class JsonlFileSink(ObservabilitySink):
    """Append events to a JSON lines file.

    Writes are serialized with an asyncio lock so lines from concurrent
    workflows never interleave. The file is only ever appended to.

    Attributes:
        path: Destination file. Parent directories are created on first write.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        line = json.dumps(
            {
                "event_type": event_type,
                "recorded_at": datetime.now(UTC).isoformat(),
                "payload": payload,
            },
            default=str,
        )
        async with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.path, "a") as f:
                await f.write(line + "\n")

    async def read_events(self) -> list[dict[str, Any]]:
        """Read back every recorded event."""
        if not self.path.exists():
            return []
        async with aiofiles.open(self.path) as f:
            content = await f.read()
        return [json.loads(line) for line in content.splitlines() if line.strip()]


class FanOutSink(ObservabilitySink):
    """Forward each event to several sinks.

    A failing sink is logged and does not prevent delivery to the others.
    """

    def __init__(self, *sinks: ObservabilitySink) -> None:
        self.sinks = list(sinks)

    async def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                await sink.emit(event_type, payload)
            except Exception as e:
                log.error("sink_emit_failed", sink=type(sink).__name__, event_type=event_type, error=str(e))
