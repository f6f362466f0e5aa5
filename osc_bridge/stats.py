"""
Process-wide relay counters.
"""

from threading import Lock
from typing import Optional

from .events import now_ms


class RelayStats:
    """
    Counters shared by the listener, subscriber registry and monitor.

    Writers serialize through an internal lock. Readers use the plain
    attributes, which are replaced atomically, and never take the lock.
    """

    def __init__(self, started_ms: Optional[int] = None):
        self._lock = Lock()

        self.message_count = 0
        # Starts at process start so the first status line reads ACTIVE
        self.last_message_ms = now_ms() if started_ms is None else started_ms
        self.connected_subscribers = 0
        self.decode_errors = 0
        self.dropped_subscribers = 0

    def record_message(self, timestamp_ms: int):
        with self._lock:
            self.message_count += 1
            self.last_message_ms = timestamp_ms

    def record_decode_error(self):
        with self._lock:
            self.decode_errors += 1

    def record_dropped_subscriber(self):
        with self._lock:
            self.dropped_subscribers += 1

    def set_connected_subscribers(self, count: int):
        with self._lock:
            self.connected_subscribers = count

    def is_active(self, activity_window_ms: int, at_ms: Optional[int] = None) -> bool:
        if at_ms is None:
            at_ms = now_ms()
        return (at_ms - self.last_message_ms) < activity_window_ms

    def __str__(self) -> str:
        return (
            f"RelayStats(messages={self.message_count}, "
            f"clients={self.connected_subscribers}, "
            f"decode_errors={self.decode_errors}, "
            f"dropped={self.dropped_subscribers})"
        )
