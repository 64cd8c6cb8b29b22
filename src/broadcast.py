from __future__ import annotations

import queue
import threading
from typing import Callable, List, Optional

from src.schemas import UnmaskEvent


Subscriber = Callable[[UnmaskEvent], None]


class StatusBroadcaster:
    """Fan-out of lifecycle events to whoever is listening right now.

    - Best-effort: a failing subscriber is skipped, publish never raises
    - No replay: late subscribers only see future events
    - Thread-safe (coarse lock around the subscriber list only)
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self.delivery_errors = 0

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            self.unsubscribe(subscriber)

        return _unsubscribe

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            try:
                self._subscribers.remove(subscriber)
            except ValueError:
                pass

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: UnmaskEvent) -> None:
        with self._lock:
            targets = list(self._subscribers)
        for sub in targets:
            try:
                sub(event)
            except Exception:
                # Disconnected channel, closed popup, broken pipe... keep going
                self.delivery_errors += 1


class QueueChannel:
    """Persistent subscription channel backed by a bounded queue.

    Never blocks the publisher: when full, the oldest event is dropped.
    """

    def __init__(self, maxsize: int = 1000) -> None:
        self._queue: "queue.Queue[UnmaskEvent]" = queue.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def __call__(self, event: UnmaskEvent) -> None:
        if self.closed:
            raise RuntimeError("channel closed")
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> Optional[UnmaskEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[UnmaskEvent]:
        out: List[UnmaskEvent] = []
        while True:
            try:
                out.append(self._queue.get_nowait())
            except queue.Empty:
                return out

    def close(self) -> None:
        self.closed = True
