"""
Liveness monitor for the relay.

Periodically reports whether OSC traffic is flowing, how many messages have
been relayed and how many subscribers are connected. Optionally exports the
same figures to InfluxDB.
"""

import logging
from threading import Event, Lock, Thread
from typing import List, Optional

from .config import RelayConfig
from .events import now_ms
from .stats import RelayStats

try:
    from influxdb_client_3 import InfluxDBClient3, Point
    INFLUXDB_AVAILABLE = True
except ImportError:
    INFLUXDB_AVAILABLE = False


class LivenessMonitor:
    """
    Background status reporter.

    Reads RelayStats without locking and has no effect on relaying.
    """

    # Seconds between InfluxDB batch flushes
    INFLUX_FLUSH_INTERVAL = 2.0

    def __init__(self, config: RelayConfig, stats: RelayStats):
        self.config = config
        self.stats = stats
        self.logger = logging.getLogger(__name__)

        self._stop = Event()
        self.thread: Optional[Thread] = None

        # Telemetry - InfluxDB with batch buffering
        self.influx_client: Optional["InfluxDBClient3"] = None
        self.influx_buffer: List["Point"] = []
        self.influx_buffer_lock = Lock()
        self.influx_batch_thread: Optional[Thread] = None

    def status_line(self, at_ms: Optional[int] = None) -> str:
        """Format the current status."""
        active = self.stats.is_active(self.config.activity_window_ms, at_ms)
        status = "ACTIVE" if active else "IDLE"
        return (
            f"[Status] {status} | Messages: {self.stats.message_count} "
            f"| Clients: {self.stats.connected_subscribers}"
        )

    def report(self):
        """Emit one status line and buffer a telemetry point."""
        at_ms = now_ms()
        self.logger.info(self.status_line(at_ms))

        if self.influx_client:
            self._buffer_point(at_ms)

    def start(self):
        """Start the reporter thread (and telemetry, if enabled)."""
        self._stop.clear()
        self._init_influxdb()

        self.thread = Thread(target=self._run, name="liveness-monitor", daemon=True)
        self.thread.start()

    def _run(self):
        while not self._stop.wait(self.config.status_interval):
            try:
                self.report()
            except Exception as e:
                self.logger.error(f"Error reporting status: {e}")

    def stop(self, timeout: float = 5.0):
        """Stop reporting and flush telemetry."""
        self._stop.set()

        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=timeout)
        self.thread = None

        self._close_influxdb(timeout)

    def _init_influxdb(self):
        """Initialize InfluxDB client if telemetry is enabled."""
        if not self.config.telemetry_enabled:
            self.logger.debug("Telemetry disabled")
            return

        if not INFLUXDB_AVAILABLE:
            self.logger.warning("Telemetry enabled but influxdb3-python package not installed. "
                                "Install with: pip install influxdb3-python")
            return

        try:
            self.influx_client = InfluxDBClient3(
                host=self.config.influxdb_host,
                database=self.config.influxdb_database,
                token=self.config.influxdb_token
            )

            self.influx_batch_thread = Thread(target=self._influx_batch_writer, name="influx-writer", daemon=True)
            self.influx_batch_thread.start()

            self.logger.info(f"InfluxDB telemetry enabled: {self.config.influxdb_host}/{self.config.influxdb_database}")
        except Exception as e:
            self.logger.error(f"Failed to initialize InfluxDB client: {e}")
            self.influx_client = None

    def _buffer_point(self, at_ms: int):
        try:
            point = (
                Point("relay_status")
                .field("message_count", int(self.stats.message_count))
                .field("connected_subscribers", int(self.stats.connected_subscribers))
                .field("decode_errors", int(self.stats.decode_errors))
                .field("dropped_subscribers", int(self.stats.dropped_subscribers))
                .field("active", self.stats.is_active(self.config.activity_window_ms, at_ms))
                .time(at_ms * 1_000_000)
            )
            with self.influx_buffer_lock:
                self.influx_buffer.append(point)
        except Exception as e:
            self.logger.warning(f"Failed to buffer InfluxDB point: {e}")

    def _flush_influx(self):
        with self.influx_buffer_lock:
            if not self.influx_buffer:
                return
            points_to_write = self.influx_buffer[:]
            self.influx_buffer.clear()

        try:
            self.influx_client.write(record=points_to_write)
            self.logger.debug(f"Batch wrote {len(points_to_write)} points to InfluxDB")
        except Exception as e:
            self.logger.warning(f"Failed to batch write to InfluxDB: {e}")

    def _influx_batch_writer(self):
        """Background thread that batches and writes points."""
        while not self._stop.wait(self.INFLUX_FLUSH_INTERVAL):
            self._flush_influx()

        # Final flush on shutdown
        self._flush_influx()

    def _close_influxdb(self, timeout: float):
        if not self.influx_client:
            return

        try:
            if self.influx_batch_thread and self.influx_batch_thread.is_alive():
                self.influx_batch_thread.join(timeout=timeout)

            self.influx_client.close()
            self.logger.info("InfluxDB client closed")
        except Exception as e:
            self.logger.warning(f"Error closing InfluxDB client: {e}")

        self.influx_client = None
        self.influx_batch_thread = None
