#!/usr/bin/env python
"""
Index change notifications.

Provides a publish/subscribe broker plus a publisher interface so the index
manager can announce changes (track added, cleanup completed, ...) without
knowing who listens. Publishing never happens while the index writer lock is
held; subscribers therefore cannot deadlock against index mutations.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from queue import Empty, Queue
from typing import Callable, Dict, Iterator, List

logger = logging.getLogger(__name__)

Listener = Callable[[dict], None]


class EventBroker:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._subscribers: Dict[int, Queue] = {}
        self._listeners: List[Listener] = []
        self._next_id = 1

    def publish(self, event: dict) -> None:
        with self._lock:
            queues = list(self._subscribers.values())
            listeners = list(self._listeners)
        for q in queues:
            q.put(event)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.warning("Index event listener failed for %s", event.get("event"), exc_info=True)

    def add_listener(self, listener: Listener) -> None:
        """Register an in-process callback (cache invalidation, metrics, ...)."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, heartbeat_seconds: int = 15) -> Iterator[str]:
        """Return an iterator yielding SSE-formatted lines."""
        with self._lock:
            sid = self._next_id
            self._next_id += 1
            q: Queue = Queue()
            self._subscribers[sid] = q

        last_beat = time.time()
        try:
            while True:
                try:
                    ev = q.get(timeout=1.0)
                    payload = json.dumps(ev, ensure_ascii=False, default=str)
                    yield f"event: {ev.get('event', 'message')}\ndata: {payload}\n\n"
                except Empty:
                    now = time.time()
                    if now - last_beat >= heartbeat_seconds:
                        last_beat = now
                        yield "event: heartbeat\n" + f"data: {{\"ts\": {int(now)} }}\n\n"
        finally:
            with self._lock:
                self._subscribers.pop(sid, None)


class EventPublisher:
    def publish(self, event: dict) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class NullPublisher(EventPublisher):
    def publish(self, event: dict) -> None:
        return None


class BrokerPublisher(EventPublisher):
    def __init__(self, broker: EventBroker) -> None:
        self._broker = broker

    def publish(self, event: dict) -> None:
        self._broker.publish(event)


__all__ = ["EventBroker", "EventPublisher", "NullPublisher", "BrokerPublisher"]
