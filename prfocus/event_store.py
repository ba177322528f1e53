"""Bounded in-memory log of normalized webhook events."""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque

from prfocus.models import EventKind, EventStats, EventSummary, NormalizedEvent

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000
DEFAULT_LIMIT = 50
RECENT_ACTIVITY_SIZE = 10


class EventStore:
    """Newest-first event log capped at ``capacity`` entries.

    One instance is built per process by the host application and shared by
    the webhook and query routes. All access goes through a single lock so
    concurrent deliveries served from worker threads never interleave a
    prepend with a truncate.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._events: deque[NormalizedEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def store(self, event: NormalizedEvent) -> None:
        with self._lock:
            # appendleft on a bounded deque drops the oldest entry from the right.
            self._events.appendleft(event)
            size = len(self._events)
        logger.debug("Stored event %s (%s total events in store)", event.id, size)

    def get_events(
        self,
        limit: int | None = DEFAULT_LIMIT,
        type: str | EventKind | None = None,  # noqa: A002 - mirrors the query parameter name
        repository: str | None = None,
        installation_id: int | None = None,
    ) -> list[NormalizedEvent]:
        kind = type.value if isinstance(type, EventKind) else type
        max_items = limit if limit and limit > 0 else DEFAULT_LIMIT

        with self._lock:
            snapshot = list(self._events)

        selected: list[NormalizedEvent] = []
        for event in snapshot:
            if kind and event.kind.value != kind:
                continue
            if repository and event.repository.full_name != repository:
                continue
            if installation_id is not None and event.installation_id != installation_id:
                continue
            selected.append(event)
            if len(selected) >= max_items:
                break
        return selected

    def get_stats(self) -> EventStats:
        with self._lock:
            snapshot = list(self._events)

        by_type: Counter[str] = Counter()
        by_repo: Counter[str] = Counter()
        for event in snapshot:
            by_type[event.kind.value] += 1
            by_repo[event.repository.full_name] += 1

        return EventStats(
            total_events=len(snapshot),
            events_by_type=dict(by_type),
            events_by_repository=dict(by_repo),
            recent_activity=snapshot[:RECENT_ACTIVITY_SIZE],
        )

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
        logger.info("Event store cleared")


def describe_event(event: NormalizedEvent) -> str:
    summary = event.payload_summary
    if event.kind == EventKind.PULL_REQUEST:
        return f"PR #{summary.get('pr_number')}: {summary.get('pr_title', '')}"
    if event.kind == EventKind.ISSUE:
        return f"Issue #{summary.get('issue_number')}: {summary.get('issue_title', '')}"
    if event.kind == EventKind.PULL_REQUEST_COMMENT:
        return f"Comment on PR #{summary.get('issue_number')}"
    if event.kind == EventKind.ISSUE_COMMENT:
        return f"Comment on Issue #{summary.get('issue_number')}"
    return event.action


def summarize_event(event: NormalizedEvent) -> EventSummary:
    return EventSummary(
        id=event.id,
        type=event.kind.value,
        action=event.action,
        repository=event.repository.full_name,
        actor=event.actor.login,
        timestamp=event.timestamp,
        description=describe_event(event),
    )
