"""
OSC Bridge - UDP to WebSocket relay for OSC control data

This package relays OSC messages sent by phone sensor apps (PhyOSC,
MotionSender, TouchOSC, ...) to browser clients:
- OSC datagrams (UDP, default port 8000) are decoded into address + args
- Each message is serialized once as JSON
- The JSON is pushed to every connected WebSocket subscriber (default port 8080)

Slow or dead subscribers are dropped instead of slowing the relay down.
"""

__version__ = "1.0.0"

from .config import RelayConfig, load_configuration
from .exceptions import (
    RelayServiceError,
    ConfigurationError,
    BindError,
    DecodeError,
    SubscriberWriteError
)
from .events import NormalizedEvent
from .protocol import OscMessage, decode_message, decode_packet
from .registry import SubscriberRegistry
from .broadcast import Broadcaster
from .stats import RelayStats
from .relay_service import OSCRelayService
from .subscribers import Subscriber, WebSocketSubscriber

__all__ = [
    '__version__',
    'RelayConfig',
    'load_configuration',
    'RelayServiceError',
    'ConfigurationError',
    'BindError',
    'DecodeError',
    'SubscriberWriteError',
    'NormalizedEvent',
    'OscMessage',
    'decode_message',
    'decode_packet',
    'SubscriberRegistry',
    'Broadcaster',
    'RelayStats',
    'OSCRelayService',
    'Subscriber',
    'WebSocketSubscriber',
]
