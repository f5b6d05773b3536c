"""
In-memory request telemetry for the HTTP API.

Counters are per process and reset on restart. They exist to answer "is the
cache doing its job" and "are tool calls failing" without a metrics stack.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Literal, Optional

EventKind = Literal["pack", "chat"]


@dataclass(frozen=True)
class TelemetryEvent:
    kind: EventKind
    ok: bool
    duration_ms: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "ok": self.ok,
            "duration_ms": self.duration_ms,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp,
        }


@dataclass
class RequestStats:
    """Running totals for one kind of request plus kind-specific counters."""

    counters: Dict[str, int] = field(default_factory=dict)
    count: int = 0
    failures: int = 0
    total_duration_ms: float = 0.0
    last_timestamp: Optional[float] = None

    def add(self, event: TelemetryEvent, **increments: int) -> None:
        self.count += 1
        self.failures += 0 if event.ok else 1
        self.total_duration_ms += event.duration_ms
        self.last_timestamp = event.timestamp
        for name, amount in increments.items():
            self.counters[name] = self.counters.get(name, 0) + amount

    def as_dict(self) -> Dict[str, Any]:
        average = self.total_duration_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "failures": self.failures,
            "total_duration_ms": self.total_duration_ms,
            "average_duration_ms": average,
            "last_timestamp": self.last_timestamp,
            **self.counters,
        }


class Telemetry:
    """Thread-safe collector behind the ``/telemetry`` endpoint."""

    def __init__(self, history_size: int = 50) -> None:
        self._lock = threading.Lock()
        self._recent: Deque[TelemetryEvent] = deque(maxlen=history_size)
        self._stats: Dict[EventKind, RequestStats] = {
            "pack": RequestStats(counters={"cache_hits": 0}),
            "chat": RequestStats(counters={"tool_failures": 0}),
        }

    def _record(self, event: TelemetryEvent, **increments: int) -> None:
        with self._lock:
            self._recent.appendleft(event)
            self._stats[event.kind].add(event, **increments)

    def record_pack(
        self,
        duration_ms: float,
        ok: bool,
        from_cache: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = {"from_cache": from_cache, **(metadata or {})}
        event = TelemetryEvent(kind="pack", ok=ok, duration_ms=duration_ms, metadata=details)
        self._record(event, cache_hits=int(from_cache))

    def record_chat(self, duration_ms: float, ok: bool, tool_failures: int = 0) -> None:
        event = TelemetryEvent(
            kind="chat",
            ok=ok,
            duration_ms=duration_ms,
            metadata={"tool_failures": tool_failures},
        )
        self._record(event, tool_failures=tool_failures)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "pack": self._stats["pack"].as_dict(),
                "chat": self._stats["chat"].as_dict(),
                "recent_events": [event.as_dict() for event in self._recent],
            }
