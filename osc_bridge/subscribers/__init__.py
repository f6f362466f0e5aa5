"""
Stream subscribers.

Each connected consumer is wrapped in a Subscriber that owns its outbound
queue. The WebSocket implementation is the only transport today.
"""

from .base import Subscriber
from .websocket import WebSocketSubscriber

__all__ = ['Subscriber', 'WebSocketSubscriber']
