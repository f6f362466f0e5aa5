"""
WebSocket subscriber implementation.

Wraps a connection from the ``websockets`` threaded server. Each relayed
event is sent as one text frame; frames sent by the browser are ignored.
"""

import logging

from websockets.exceptions import ConnectionClosed

from ..exceptions import SubscriberWriteError
from .base import Subscriber


class WebSocketSubscriber(Subscriber):
    """
    Subscriber backed by a ``websockets.sync.server.ServerConnection``.
    """

    def __init__(self, connection, queue_size: int):
        """
        Initialize WebSocket subscriber.

        Args:
            connection: Open server connection
            queue_size: Maximum number of undelivered payloads
        """
        remote = connection.remote_address
        client_address = remote[0] if remote else "unknown"

        super().__init__(client_address, queue_size)
        self.logger = logging.getLogger(__name__)
        self.connection = connection

    def send(self, payload: str):
        try:
            self.connection.send(payload)
        except ConnectionClosed as e:
            raise SubscriberWriteError(f"connection closed ({e})")
        except OSError as e:
            raise SubscriberWriteError(f"socket error ({e})")

    def check_alive(self):
        try:
            message = self.connection.recv(timeout=0)
        except TimeoutError:
            return
        except ConnectionClosed as e:
            raise SubscriberWriteError(f"connection closed ({e})")
        except OSError as e:
            raise SubscriberWriteError(f"socket error ({e})")

        self.logger.debug(f"Ignoring {len(message)}-byte frame from subscriber {self.client_address}")

    def close_transport(self, code: int = 1000, reason: str = ""):
        try:
            self.connection.close(code, reason)
        except Exception as e:
            self.logger.warning(f"Error closing connection to {self.client_address}: {e}")
