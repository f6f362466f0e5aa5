"""
WebSocket endpoint for stream subscribers.

Runs the ``websockets`` threaded server: one accept loop plus one thread per
connection. Each connection thread registers a subscriber and then serves
as that subscriber's writer until it disconnects.
"""

import logging
import time
from threading import Thread
from typing import Optional

from websockets.sync.server import Server, serve

from .config import RelayConfig
from .exceptions import BindError
from .registry import SubscriberRegistry
from .subscribers import WebSocketSubscriber

# Close code for "try again later"
CLOSE_TRY_AGAIN_LATER = 1013


class StreamServer:
    """
    Accepts WebSocket subscribers and keeps the registry up to date.
    """

    def __init__(self, config: RelayConfig, registry: SubscriberRegistry):
        """
        Initialize the stream server.

        Args:
            config: Service configuration
            registry: Registry shared with the broadcaster
        """
        self.config = config
        self.registry = registry
        self.logger = logging.getLogger(__name__)

        self.server: Optional[Server] = None
        self.thread: Optional[Thread] = None
        self.port: Optional[int] = None

    def open(self):
        """
        Bind the listening socket.

        Raises:
            BindError: If the port cannot be bound
        """
        try:
            self.server = serve(
                self._handle_connection,
                self.config.stream_host,
                self.config.stream_port,
            )
        except OSError as e:
            raise BindError(
                f"Cannot open WebSocket server on {self.config.stream_host}:{self.config.stream_port}: {e}"
            )

        self.port = self.server.socket.getsockname()[1]
        self.logger.info(f"WebSocket server bound to {self.config.stream_host}:{self.port}")

    def start(self):
        """Run the accept loop in a background thread."""
        if self.server is None:
            self.open()

        self.thread = Thread(target=self.server.serve_forever, name="stream-accept", daemon=True)
        self.thread.start()

    def _handle_connection(self, connection):
        """Serve one subscriber for the lifetime of its connection."""
        limit = self.config.max_subscribers
        if limit and len(self.registry) >= limit:
            remote = connection.remote_address
            self.logger.warning(
                f"Rejecting subscriber from {remote[0] if remote else 'unknown'}: "
                f"limit of {limit} reached"
            )
            connection.close(CLOSE_TRY_AGAIN_LATER, "subscriber limit reached")
            return

        subscriber = WebSocketSubscriber(connection, self.config.subscriber_queue_size)
        self.registry.register(subscriber)

        try:
            subscriber.pump(self.config.socket_poll_interval)
        finally:
            self.registry.unregister(subscriber)

    def close(self, timeout: Optional[float] = None):
        """
        Stop accepting, let subscribers flush their queues, then close them.

        Args:
            timeout: Upper bound in seconds on the drain (default: shutdown_timeout)
        """
        if timeout is None:
            timeout = self.config.shutdown_timeout

        subscribers = self.registry.close_all(drain=True)

        deadline = time.monotonic() + timeout
        for subscriber in subscribers:
            remaining = max(0.0, deadline - time.monotonic())
            if not subscriber.wait_closed(remaining):
                self.logger.warning(f"Subscriber {subscriber.client_address} did not drain in time")
                subscriber.close()

        if self.server is not None:
            try:
                if self.thread is None:
                    # shutdown() waits for serve_forever() to exit
                    self.server.socket.close()
                else:
                    self.server.shutdown()
            except Exception as e:
                self.logger.warning(f"Error shutting down WebSocket server: {e}")

        # Connections accepted while draining
        self.registry.close_all()

        if self.thread is not None and self.thread.is_alive():
            self.thread.join(timeout=max(0.0, deadline - time.monotonic()))

        self.server = None
        self.thread = None
        self.logger.info("WebSocket server closed")
