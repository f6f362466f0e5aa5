"""
Broadcast fan-out of relay events to subscribers.
"""

import logging
from typing import Optional

from .events import NormalizedEvent
from .exceptions import SubscriberWriteError
from .registry import SubscriberRegistry
from .stats import RelayStats


class Broadcaster:
    """
    Delivers each event to every registered subscriber.

    The event is serialized once and the same payload is queued on every
    subscriber. A failing subscriber is removed from the registry and never
    affects delivery to the others or the caller.
    """

    def __init__(self, registry: SubscriberRegistry, stats: Optional[RelayStats] = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry
        self.stats = stats

    def broadcast(self, event: NormalizedEvent) -> int:
        """
        Fan an event out to the current subscribers.

        Args:
            event: Event to relay

        Returns:
            Number of subscribers the payload was queued for
        """
        subscribers = self.registry.snapshot()
        if not subscribers:
            return 0

        payload = event.to_payload()

        delivered = 0
        for subscriber in subscribers:
            try:
                subscriber.deliver(payload)
                delivered += 1
            except SubscriberWriteError as e:
                self._drop(subscriber, e)

        return delivered

    def _drop(self, subscriber, error: Exception):
        self.logger.warning(f"Dropping subscriber {subscriber.client_address}: {error}")

        # Another path may already have removed it; only count our own removal
        if self.registry.unregister(subscriber) and self.stats is not None:
            self.stats.record_dropped_subscriber()

        subscriber.close()
