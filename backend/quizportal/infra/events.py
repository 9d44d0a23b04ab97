"""In-process change notification for live listings.

Stores call ``SnapshotHub.publish(topic)`` after a committed write. Each
``Subscription`` then reloads its full matching set and hands the snapshot to
its push callback (if any) and to its pull slot. There is no diffing: every
delivery is the complete current list, so a slow poller only ever sees the
newest one.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections import defaultdict
from collections.abc import Callable, Iterator
from typing import Any

logger = logging.getLogger(__name__)

TOPIC_QUESTIONS = "quizQuestions"
TOPIC_STAGING = "stagingBatches"

Snapshot = list[Any]
SnapshotLoader = Callable[[], Snapshot]
SnapshotCallback = Callable[[Snapshot], None]


class Subscription:
    def __init__(
        self,
        *,
        topic: str,
        loader: SnapshotLoader,
        callback: SnapshotCallback | None,
        on_close: Callable[[Subscription], None],
    ):
        self.topic = topic
        self._loader = loader
        self._callback = callback
        self._on_close = on_close
        self._queue: queue.Queue[Snapshot] = queue.Queue(maxsize=1)
        self._latest: Snapshot | None = None
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self) -> None:
        if self._closed:
            return
        snapshot = self._loader()
        with self._lock:
            self._latest = snapshot
            # Only the newest unpolled snapshot is kept.
            try:
                self._queue.get_nowait()
            except queue.Empty:
                pass
            self._queue.put_nowait(snapshot)
        if self._callback is not None:
            try:
                self._callback(snapshot)
            except Exception:
                logger.exception("Subscriber callback failed for topic %s", self.topic)

    def latest(self) -> Snapshot | None:
        with self._lock:
            return self._latest

    def poll(self, timeout: float | None = 0.0) -> Snapshot | None:
        """Next undelivered snapshot, or ``None`` if none arrives in time."""
        try:
            if timeout is not None and timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._on_close(self)

    def __iter__(self) -> Iterator[Snapshot]:
        while not self._closed:
            snapshot = self.poll(timeout=0.25)
            if snapshot is not None:
                yield snapshot

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class SnapshotHub:
    def __init__(self):
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(
        self,
        topic: str,
        loader: SnapshotLoader,
        callback: SnapshotCallback | None = None,
    ) -> Subscription:
        subscription = Subscription(topic=topic, loader=loader, callback=callback, on_close=self._remove)
        with self._lock:
            self._subscriptions[topic].append(subscription)
        subscription.deliver()
        return subscription

    def publish(self, topic: str) -> None:
        with self._lock:
            targets = list(self._subscriptions.get(topic, ()))
        for subscription in targets:
            try:
                subscription.deliver()
            except Exception:
                logger.exception("Snapshot reload failed for topic %s", topic)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(topic, ()))

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            items = self._subscriptions.get(subscription.topic, [])
            if subscription in items:
                items.remove(subscription)
