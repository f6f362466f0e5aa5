"""
Normalized relay events and their subscriber wire payload.
"""

import json
import math
import time
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from .protocol import ArgValue, OscMessage


def now_ms() -> int:
    """Wall-clock time in milliseconds."""
    return time.time_ns() // 1_000_000


def _json_safe(value: ArgValue) -> Any:
    # NaN/Infinity are not valid JSON; browsers expect null for them
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


@dataclass(frozen=True)
class NormalizedEvent:
    """
    One relayed OSC message.

    Attributes:
        address: OSC address path, always starting with '/'
        args: Decoded arguments in wire order
        source: IP address of the sender
        timestamp_ms: Arrival time in milliseconds since the epoch
    """

    address: str
    args: Tuple[ArgValue, ...]
    source: str
    timestamp_ms: int

    def __post_init__(self):
        if not self.address.startswith("/"):
            raise ValueError(f"OSC address must start with '/': {self.address!r}")
        if not isinstance(self.args, tuple):
            object.__setattr__(self, 'args', tuple(self.args))

    @classmethod
    def from_message(cls, message: OscMessage, source: str,
                     timestamp_ms: Optional[int] = None) -> 'NormalizedEvent':
        if timestamp_ms is None:
            timestamp_ms = now_ms()
        return cls(message.address, message.args, source, timestamp_ms)

    def to_payload(self) -> str:
        """Serialize to the JSON text frame sent to subscribers."""
        return json.dumps(
            {
                "address": self.address,
                "args": [_json_safe(arg) for arg in self.args],
                "source": self.source,
                "timestamp": self.timestamp_ms,
            },
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )

    def describe(self) -> str:
        """Short form for console logging."""
        return f"[{self.address}] {format_args(self.args)}"


def format_args(args: Sequence[ArgValue]) -> str:
    parts: List[str] = []
    for value in args:
        if isinstance(value, float):
            parts.append(f"{value:.3f}")
        else:
            parts.append(str(value))
    return ", ".join(parts)
