"""
Main OSC bridge relay service.

This service receives OSC messages via UDP, decodes them and forwards each
one as JSON to every connected WebSocket subscriber.
"""

import logging
import signal
import socket
import sys
from threading import Event, Lock, Thread
from typing import List, Optional, Tuple

from .broadcast import Broadcaster
from .config import RelayConfig, load_configuration
from .discovery import get_local_ips
from .events import NormalizedEvent, now_ms
from .exceptions import BindError, ConfigurationError, DecodeError
from .monitor import LivenessMonitor
from .protocol import decode_packet
from .registry import SubscriberRegistry
from .stats import RelayStats
from .stream_server import StreamServer

BANNER_RULE = "=" * 44


class OSCRelayService:
    """
    Main relay service.

    Receives OSC datagrams on the ingest port and broadcasts every decoded
    message to the subscribers of the WebSocket stream server.
    """

    def __init__(self, config: RelayConfig):
        """
        Initialize the relay service.

        Args:
            config: Service configuration
        """
        self.config = config
        self.logger = logging.getLogger(__name__)

        # Shared state
        self.stats = RelayStats()
        self.registry = SubscriberRegistry(self.stats)

        # Components
        self.broadcaster = Broadcaster(self.registry, self.stats)
        self.stream_server = StreamServer(config, self.registry)
        self.monitor = LivenessMonitor(config, self.stats)

        # Sockets
        self.ingest_socket: Optional[socket.socket] = None
        self.osc_port: Optional[int] = None

        # State
        self.running = False
        self.listener_thread: Optional[Thread] = None
        self._stop_requested = Event()
        self._stop_lock = Lock()
        self._stopped = False

    @property
    def stream_port(self) -> Optional[int]:
        return self.stream_server.port

    def open(self):
        """
        Open the UDP ingest socket and the WebSocket server.

        Does nothing if they are already open.

        Raises:
            BindError: If either endpoint cannot be opened
        """
        if self.ingest_socket is not None:
            return

        try:
            self.ingest_socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self.ingest_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self.ingest_socket.bind((self.config.osc_host, self.config.osc_port))
            self.ingest_socket.settimeout(self.config.socket_poll_interval)
        except OSError as e:
            self._close_ingest_socket()
            raise BindError(f"Cannot bind OSC socket to {self.config.osc_host}:{self.config.osc_port}: {e}")

        self.osc_port = self.ingest_socket.getsockname()[1]
        self.logger.info(f"Ingest socket bound to {self.config.osc_host}:{self.osc_port}")

        try:
            self.stream_server.open()
        except BindError:
            self._close_ingest_socket()
            raise

    def _close_ingest_socket(self):
        if self.ingest_socket:
            try:
                self.ingest_socket.close()
            except OSError as e:
                self.logger.warning(f"Error closing ingest socket: {e}")
            self.ingest_socket = None

    def handle_datagram(self, data: bytes, client_addr: Tuple[str, int],
                        received_ms: Optional[int] = None) -> int:
        """
        Decode one datagram and broadcast its messages.

        Malformed datagrams are dropped and counted; they never update the
        message counters.

        Args:
            data: Raw datagram
            client_addr: Sender (IP, port)
            received_ms: Arrival time, defaults to now

        Returns:
            Number of messages relayed
        """
        try:
            messages = decode_packet(data)
        except DecodeError as e:
            self.stats.record_decode_error()
            self.logger.debug(f"Dropping malformed datagram from {client_addr[0]}:{client_addr[1]}: {e}")
            return 0

        if received_ms is None:
            received_ms = now_ms()

        for message in messages:
            event = NormalizedEvent.from_message(message, client_addr[0], received_ms)
            self.stats.record_message(received_ms)

            log_every = self.config.log_every
            if log_every and self.stats.message_count % log_every == 0:
                self.logger.info(event.describe())

            self.broadcaster.broadcast(event)

        return len(messages)

    def _listen_loop(self):
        """
        Main datagram receiving loop.

        Receives datagrams from the ingest socket and relays them.
        """
        self.logger.info("Entering main listen loop")

        while self.running:
            try:
                data, client_addr = self.ingest_socket.recvfrom(self.config.socket_buffer_size)
            except socket.timeout:
                continue
            except OSError as e:
                if not self.running or self.ingest_socket is None:
                    break
                self.logger.error(f"Error receiving datagram: {e}")
                continue

            try:
                self.handle_datagram(data, client_addr)
            except Exception as e:
                self.logger.error(f"Error relaying datagram from {client_addr[0]}: {e}", exc_info=True)

        self.logger.info("Exited main listen loop")

    def start(self, block: bool = True):
        """
        Start the relay service.

        Args:
            block: Run the listen loop in the calling thread until stopped

        Raises:
            BindError: If an endpoint cannot be opened
        """
        self.logger.info("Starting OSC Bridge Relay")
        self.logger.info(f"Configuration: {self.config}")

        self.open()

        self.running = True
        if self._stop_requested.is_set():
            self.logger.info("Stop requested before start, not entering listen loop")
            self.stop()
            return

        self.stream_server.start()
        self.monitor.start()

        if not block:
            self.listener_thread = Thread(target=self._listen_loop, name="osc-listener", daemon=True)
            self.listener_thread.start()
            return

        try:
            self._listen_loop()
        finally:
            self.stop()

    def request_stop(self):
        """Ask the listen loop to exit; cleanup happens in stop()."""
        self._stop_requested.set()
        self.running = False

    def stop(self):
        """Stop the relay service and clean up resources."""
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True

        self.logger.info("Stopping relay service")
        self.running = False

        if self.listener_thread and self.listener_thread.is_alive():
            self.listener_thread.join(timeout=self.config.socket_poll_interval * 4)

        self._close_ingest_socket()
        self.stream_server.close()
        self.monitor.stop(timeout=self.config.shutdown_timeout)

        self.logger.info(f"Relay service stopped: {self.stats}")


def format_banner(osc_port: int, stream_port: int, ips: List[str]) -> str:
    """Startup banner with connection instructions for the operator."""
    if ips:
        target = f"{ips[0]} (or {', '.join(ips)})" if len(ips) > 1 else ips[0]
    else:
        target = "<your-computer-ip>"

    lines = [
        "OSC Bridge Relay",
        BANNER_RULE,
        f"OSC listening on UDP port {osc_port}",
        f"WebSocket server on port {stream_port}",
        BANNER_RULE,
        "",
        "Configure your OSC sender:",
        f"   Target IP: {target}",
        f"   Target Port: {osc_port}",
        "",
        "Connect browser to:",
        f"   ws://localhost:{stream_port}",
        "",
        BANNER_RULE,
        "Waiting for OSC messages...",
    ]
    return "\n".join(lines)


# Global service instance for signal handling
_service_instance: Optional[OSCRelayService] = None


def signal_handler(signum, frame):
    """Handle termination signals for graceful shutdown."""
    logger = logging.getLogger(__name__)
    logger.info(f"Received signal {signum}, initiating shutdown")

    if _service_instance:
        _service_instance.request_stop()


def setup_logging(log_level: str, log_file: Optional[str] = None,
                  log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"):
    """
    Setup logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        log_format: Format string for all handlers
    """
    level = getattr(logging, log_level.upper())

    # Create formatter
    formatter = logging.Formatter(log_format)

    # Setup root logger
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove any existing handlers
    logger.handlers = []

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler if specified
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # The websockets server logs every handshake at INFO
    logging.getLogger("websockets").setLevel(max(level, logging.WARNING))


def main():
    """Main entry point for the relay service."""
    global _service_instance

    try:
        # Load configuration
        config = load_configuration()

        # Setup logging
        setup_logging(config.log_level, config.log_file, config.log_format)

        # Setup signal handlers
        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

        # Create and start service
        _service_instance = OSCRelayService(config)
        _service_instance.open()

        print(format_banner(_service_instance.osc_port, _service_instance.stream_port,
                            get_local_ips()), flush=True)

        _service_instance.start()

        return 0

    except KeyboardInterrupt:
        logging.info("Keyboard interrupt received")
        if _service_instance:
            _service_instance.stop()
        return 0

    except (BindError, ConfigurationError) as e:
        print(f"Fatal: {e}", file=sys.stderr)
        return 1

    except Exception as e:
        # Without configured handlers this reaches stderr through logging.lastResort
        logging.critical(f"Fatal: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
