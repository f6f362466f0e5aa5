"""
Custom exceptions for the OSC bridge relay.
"""


class RelayServiceError(Exception):
    """Base exception for all relay service errors."""
    pass


class ConfigurationError(RelayServiceError):
    """Raised when configuration is invalid or incomplete."""
    pass


class BindError(RelayServiceError):
    """Raised when a listening endpoint cannot be opened."""
    pass


class DecodeError(RelayServiceError):
    """Raised when an OSC datagram is malformed or uses an unsupported type tag."""
    pass


class SubscriberWriteError(RelayServiceError):
    """Raised when an event cannot be handed to a subscriber."""
    pass
