from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock

from .policy import Allowance
from .protocol import ServerStatus, utc_now

log = logging.getLogger("pdbmgr.events")

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}


@dataclass(frozen=True)
class Event:
    level: str  # DEBUG|INFO|WARN|ERROR
    kind: str  # probe_ok|probe_failed|apply_ok|apply_skipped|apply_conflict|apply_retry|apply_exhausted|apply_failed|...
    message: str
    ts: datetime = field(default_factory=utc_now)


@dataclass
class Counters:
    ticks: int = 0
    probe_failures: int = 0
    writes: int = 0
    conflicts: int = 0
    exhaustions: int = 0


class RuntimeState:
    """In-memory state shared between the reconciler thread and the status API."""

    def __init__(self, max_events: int = 200) -> None:
        self.lock = Lock()
        self.last_status: ServerStatus | None = None
        self.last_applied: Allowance | None = None
        self.last_tick_at: datetime | None = None
        self.counters = Counters()
        self.events: deque[Event] = deque(maxlen=max_events)

    def record(self, level: str, kind: str, message: str) -> Event:
        ev = Event(level=level, kind=kind, message=message)
        with self.lock:
            self.events.append(ev)
        log.log(_LEVELS.get(level, logging.INFO), "[%s] %s", kind, message)
        return ev

    def recent_events(self, limit: int = 50) -> list[Event]:
        with self.lock:
            items = list(self.events)
        return list(reversed(items))[: max(0, limit)]

    def begin_tick(self) -> None:
        with self.lock:
            self.counters.ticks += 1
            self.last_tick_at = utc_now()

    def set_status(self, status: ServerStatus) -> None:
        with self.lock:
            self.last_status = status

    def set_applied(self, allowance: Allowance | None) -> None:
        with self.lock:
            self.last_applied = allowance

    def get_applied(self) -> Allowance | None:
        with self.lock:
            return self.last_applied

    def bump(self, counter: str) -> None:
        with self.lock:
            setattr(self.counters, counter, getattr(self.counters, counter) + 1)

    def snapshot(self) -> tuple[ServerStatus | None, Allowance | None, datetime | None, Counters]:
        with self.lock:
            c = self.counters
            return (
                self.last_status,
                self.last_applied,
                self.last_tick_at,
                Counters(c.ticks, c.probe_failures, c.writes, c.conflicts, c.exhaustions),
            )
