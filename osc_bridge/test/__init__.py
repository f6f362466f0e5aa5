import time
from typing import Callable, List

from osc_bridge.config import RelayConfig
from osc_bridge.exceptions import SubscriberWriteError
from osc_bridge.subscribers import Subscriber


class RecordingSubscriber(Subscriber):
    """In-memory subscriber that records what the pump sends."""

    def __init__(self, client_address: str = "10.0.0.9", queue_size: int = 64):
        super().__init__(client_address, queue_size)
        self.sent: List[str] = []
        self.transport_closed = False
        self.peer_gone = False
        self.fail_sends = False

    def send(self, payload: str):
        if self.fail_sends:
            raise SubscriberWriteError("connection reset")
        self.sent.append(payload)

    def check_alive(self):
        if self.peer_gone:
            raise SubscriberWriteError("peer went away")

    def close_transport(self):
        self.transport_closed = True

    def queued(self) -> List[str]:
        return list(self.queue.queue)


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def local_config(**overrides) -> RelayConfig:
    """Loopback config on ephemeral ports with short poll intervals."""
    values = dict(
        osc_host="127.0.0.1",
        osc_port=0,
        stream_host="127.0.0.1",
        stream_port=0,
        status_interval=60.0,
        socket_poll_interval=0.05,
        shutdown_timeout=1.0,
        log_every=0,
    )
    values.update(overrides)
    return RelayConfig(**values)
