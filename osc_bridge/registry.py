"""
Registry of live stream subscribers.
"""

import logging
from threading import Lock
from typing import Dict, Optional, Tuple

from .stats import RelayStats
from .subscribers import Subscriber


class SubscriberRegistry:
    """
    Thread-safe set of live subscribers.

    Connection threads register and unregister concurrently with the
    listener thread taking snapshots for broadcast. Every mutation and every
    snapshot happens under one lock, so a snapshot always reflects whole
    add/remove operations. Handles are the subscriber objects themselves.
    """

    def __init__(self, stats: Optional[RelayStats] = None):
        self.logger = logging.getLogger(__name__)
        self.stats = stats

        # Insertion-ordered, keyed by identity
        self._subscribers: Dict[int, Subscriber] = {}
        self._lock = Lock()

    def register(self, subscriber: Subscriber) -> Subscriber:
        """
        Add a fully constructed subscriber. Always succeeds.

        Returns:
            Handle to pass to unregister()
        """
        with self._lock:
            self._subscribers[id(subscriber)] = subscriber
            count = len(self._subscribers)
            self._update_stats(count)

        self.logger.info(f"Subscriber connected from {subscriber.client_address} (total: {count})")
        return subscriber

    def unregister(self, handle: Subscriber) -> bool:
        """
        Remove a subscriber. Unregistering an already removed handle is a no-op.

        Returns:
            True if the handle was registered
        """
        with self._lock:
            removed = self._subscribers.pop(id(handle), None)
            if removed is None:
                return False
            count = len(self._subscribers)
            self._update_stats(count)

        self.logger.info(f"Subscriber disconnected from {handle.client_address} (total: {count})")
        return True

    def snapshot(self) -> Tuple[Subscriber, ...]:
        """Point-in-time copy of the live subscribers, in registration order."""
        with self._lock:
            return tuple(self._subscribers.values())

    def close_all(self, drain: bool = False) -> Tuple[Subscriber, ...]:
        """
        Stop every subscriber and empty the registry.

        Args:
            drain: Let each subscriber send what it already has queued

        Returns:
            The subscribers that were registered
        """
        with self._lock:
            subscribers = tuple(self._subscribers.values())
            self._subscribers.clear()
            self._update_stats(0)

        for subscriber in subscribers:
            if drain:
                subscriber.drain()
            else:
                subscriber.close()

        return subscribers

    def _update_stats(self, count: int):
        if self.stats is not None:
            self.stats.set_connected_subscribers(count)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def __contains__(self, handle: Subscriber) -> bool:
        with self._lock:
            return id(handle) in self._subscribers
