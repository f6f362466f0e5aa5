"""
Abstract base class for stream subscribers.

A subscriber owns a bounded outbound queue filled by the broadcaster and
drained by a single writer loop (pump), so events reach each subscriber in
arrival order without the broadcaster ever waiting on the network.
"""

import logging
from abc import ABC, abstractmethod
from queue import Empty, Full, Queue
from threading import Event

from ..exceptions import SubscriberWriteError


class Subscriber(ABC):
    """
    Abstract base class for one connected stream consumer.

    Concrete subscribers implement the transport: sending one payload,
    probing whether the peer is still there, and closing.
    """

    def __init__(self, client_address: str, queue_size: int):
        """
        Initialize the subscriber.

        Args:
            client_address: Peer address, for logging
            queue_size: Maximum number of undelivered payloads
        """
        self.logger = logging.getLogger(__name__)
        self.client_address = client_address
        self.queue: Queue = Queue(maxsize=queue_size)

        self._accepting = Event()
        self._accepting.set()
        self._closed = Event()

    @property
    def alive(self) -> bool:
        return self._accepting.is_set() and not self._closed.is_set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def deliver(self, payload: str):
        """
        Queue a payload without blocking.

        Raises:
            SubscriberWriteError: If the subscriber is closed or its queue is full
        """
        if not self.alive:
            raise SubscriberWriteError(f"Subscriber {self.client_address} is closed")

        try:
            self.queue.put_nowait(payload)
        except Full:
            raise SubscriberWriteError(
                f"Subscriber {self.client_address} queue full ({self.queue.maxsize} pending)"
            )

    def drain(self):
        """Stop accepting payloads; the pump sends what is queued, then exits."""
        self._accepting.clear()

    def close(self):
        """
        Stop immediately and discard queued payloads.

        Never blocks; the transport itself is closed by the pump.
        """
        self._accepting.clear()
        self._closed.set()

    def wait_closed(self, timeout: float) -> bool:
        return self._closed.wait(timeout)

    def pump(self, poll_interval: float = 0.5):
        """
        Writer loop. Runs in the thread serving this subscriber's connection
        until the subscriber is closed, drained, or its transport fails.
        """
        try:
            while not self._closed.is_set():
                if not self._accepting.is_set() and self.queue.empty():
                    break

                try:
                    payload = self.queue.get(timeout=poll_interval)
                except Empty:
                    self.check_alive()
                    continue

                if self._closed.is_set():
                    break

                self.send(payload)

        except SubscriberWriteError as e:
            self.logger.info(f"Subscriber {self.client_address} write failed: {e}")

        finally:
            self.close()
            self.close_transport()

    @abstractmethod
    def send(self, payload: str):
        """
        Send one payload to the peer.

        Raises:
            SubscriberWriteError: If the transport is closed or fails
        """
        pass

    @abstractmethod
    def check_alive(self):
        """
        Probe the transport while idle.

        Raises:
            SubscriberWriteError: If the peer has gone away
        """
        pass

    @abstractmethod
    def close_transport(self):
        """
        Close the underlying connection. Must be safe to call more than once.
        """
        pass

    def __repr__(self) -> str:
        state = "alive" if self.alive else "closed"
        return f"<{type(self).__name__} {self.client_address} {state} pending={self.queue.qsize()}>"
