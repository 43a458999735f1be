"""
In-process sink for the training audit trail.

Every training event is projected here after it is written, so that
collaborators (notification fan-out, dashboards) can subscribe without
reading the events table. Delivery is best effort: the database row is the
record, the sink is only a projection.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional


@dataclass
class EventEnvelope:
    id: str
    type: str
    assignmentId: str
    eventType: str
    timestamp: str
    actor: Optional[Dict[str, Any]]
    metadata: Dict[str, Any]


class EventBroker:
    def __init__(self) -> None:
        self._subscribers: set[queue.Queue[EventEnvelope]] = set()
        self._lock = threading.Lock()

    def subscribe(self, maxsize: int = 400) -> queue.Queue[EventEnvelope]:
        q: queue.Queue[EventEnvelope] = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._subscribers.add(q)
        return q

    def unsubscribe(self, q: queue.Queue[EventEnvelope]) -> None:
        with self._lock:
            self._subscribers.discard(q)

    def publish(self, event: EventEnvelope) -> None:
        with self._lock:
            subscribers: Iterable[queue.Queue[EventEnvelope]] = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait(event)
            except queue.Full:
                # Slow consumer: drop its oldest event to make room.
                try:
                    _ = q.get_nowait()
                    q.put_nowait(event)
                except queue.Empty:
                    pass


broker = EventBroker()


def publish_event(event: EventEnvelope) -> None:
    broker.publish(event)
