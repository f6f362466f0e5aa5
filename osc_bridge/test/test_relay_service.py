import contextlib
import io
import json
import signal
import socket
import threading
import unittest
from unittest import mock

from pythonosc.osc_bundle_builder import IMMEDIATELY, OscBundleBuilder
from pythonosc.osc_message_builder import OscMessageBuilder

from osc_bridge import relay_service
from osc_bridge.config import RelayConfig
from osc_bridge.discovery import get_local_ips
from osc_bridge.exceptions import ConfigurationError
from osc_bridge.monitor import LivenessMonitor
from osc_bridge.relay_service import OSCRelayService, format_banner
from osc_bridge.stats import RelayStats
from osc_bridge.test import RecordingSubscriber, local_config, wait_until

SENDER = ("192.168.1.23", 53012)


def accel_datagram(value=0.523, address="/watch/accel/x"):
    builder = OscMessageBuilder(address=address)
    builder.add_arg(value)
    return builder.build()


class TestHandleDatagram(unittest.TestCase):
    """Datagram handling without opening any sockets."""

    def setUp(self):
        self.service = OSCRelayService(RelayConfig(log_every=0))

    def test_relays_to_subscriber(self):
        subscriber = self.service.registry.register(RecordingSubscriber())

        relayed = self.service.handle_datagram(accel_datagram().dgram, SENDER, received_ms=1760000000123)

        self.assertEqual(relayed, 1)
        self.assertEqual(json.loads(subscriber.queued()[0]), {
            "address": "/watch/accel/x",
            "args": [0.523],
            "source": "192.168.1.23",
            "timestamp": 1760000000123,
        })

    def test_updates_stats_without_subscribers(self):
        self.service.handle_datagram(accel_datagram().dgram, SENDER, received_ms=5000)

        self.assertEqual(self.service.stats.message_count, 1)
        self.assertEqual(self.service.stats.last_message_ms, 5000)
        self.assertEqual(self.service.stats.connected_subscribers, 0)

    def test_malformed_datagram_leaves_counters(self):
        subscriber = self.service.registry.register(RecordingSubscriber())
        before = self.service.stats.last_message_ms

        for junk in (b"", b"garbage", b"/x\x00\x00,z\x00\x00"):
            self.assertEqual(self.service.handle_datagram(junk, SENDER), 0)

        self.assertEqual(self.service.stats.message_count, 0)
        self.assertEqual(self.service.stats.last_message_ms, before)
        self.assertEqual(self.service.stats.decode_errors, 3)
        self.assertEqual(subscriber.queued(), [])

    def test_bundle_relays_each_message(self):
        subscriber = self.service.registry.register(RecordingSubscriber())
        bundle = OscBundleBuilder(IMMEDIATELY)
        bundle.add_content(accel_datagram(0.1, "/watch/accel/x"))
        bundle.add_content(accel_datagram(0.2, "/watch/accel/y"))

        self.assertEqual(self.service.handle_datagram(bundle.build().dgram, SENDER), 2)

        self.assertEqual(self.service.stats.message_count, 2)
        self.assertEqual([json.loads(p)["address"] for p in subscriber.queued()],
                         ["/watch/accel/x", "/watch/accel/y"])

    def test_throttled_logging(self):
        service = OSCRelayService(RelayConfig(log_every=2))

        with self.assertLogs("osc_bridge.relay_service", level="INFO") as logs:
            for n in range(4):
                service.handle_datagram(accel_datagram(float(n)).dgram, SENDER)

        self.assertEqual(logs.output, [
            "INFO:osc_bridge.relay_service:[/watch/accel/x] 1.000",
            "INFO:osc_bridge.relay_service:[/watch/accel/x] 3.000",
        ])

    def test_stop_without_start(self):
        self.service.stop()
        self.service.stop()


class TestLivenessMonitor(unittest.TestCase):

    def setUp(self):
        self.stats = RelayStats(started_ms=0)
        self.monitor = LivenessMonitor(RelayConfig(activity_window_ms=5000), self.stats)

    def test_idle_after_window(self):
        self.stats.record_message(10_000)
        self.stats.set_connected_subscribers(2)

        self.assertEqual(self.monitor.status_line(at_ms=15_000), "[Status] IDLE | Messages: 1 | Clients: 2")

    def test_active_within_window(self):
        self.stats.record_message(10_000)

        self.assertEqual(self.monitor.status_line(at_ms=14_999), "[Status] ACTIVE | Messages: 1 | Clients: 0")

    def test_report_logs_status(self):
        with self.assertLogs("osc_bridge.monitor", level="INFO") as logs:
            self.monitor.report()

        self.assertIn("[Status] IDLE | Messages: 0 | Clients: 0", logs.output[0])

    def test_start_stop(self):
        monitor = LivenessMonitor(RelayConfig(status_interval=0.01), RelayStats())
        monitor.start()
        monitor.stop(timeout=1.0)

        self.assertIsNone(monitor.thread)


class TestBanner(unittest.TestCase):

    def test_lists_addresses(self):
        banner = format_banner(8000, 8080, ["192.168.1.10", "10.0.0.4"])

        self.assertIn("OSC listening on UDP port 8000", banner)
        self.assertIn("Target IP: 192.168.1.10 (or 192.168.1.10, 10.0.0.4)", banner)
        self.assertIn("ws://localhost:8080", banner)

    def test_placeholder_without_addresses(self):
        self.assertIn("Target IP: <your-computer-ip>", format_banner(8000, 8080, []))

    def test_discovered_addresses_are_external(self):
        for address in get_local_ips():
            self.assertFalse(address.startswith("127."))
            self.assertNotEqual(address, "0.0.0.0")

    def test_route_address_then_hostname_addresses(self):
        infos = [(socket.AF_INET, socket.SOCK_DGRAM, 17, "", (address, 0))
                 for address in ("127.0.1.1", "10.0.0.4", "192.168.1.10")]

        with mock.patch("osc_bridge.discovery._primary_address", return_value="192.168.1.10"), \
                mock.patch("socket.getaddrinfo", return_value=infos):
            self.assertEqual(get_local_ips(), ["192.168.1.10", "10.0.0.4"])

    def test_only_hostname_addresses_without_route(self):
        infos = [(socket.AF_INET, socket.SOCK_DGRAM, 17, "", ("10.0.0.4", 0))]

        with mock.patch("osc_bridge.discovery._primary_address", side_effect=OSError("unreachable")), \
                mock.patch("socket.getaddrinfo", return_value=infos):
            self.assertEqual(get_local_ips(), ["10.0.0.4"])


class TestStopBeforeStart(unittest.TestCase):
    """A termination signal that lands between open() and start() is honoured."""

    def setUp(self):
        self.service = OSCRelayService(local_config())
        self.service.open()
        self.addCleanup(self.service.stop)

    def test_background_start_does_not_listen(self):
        self.service.request_stop()

        self.service.start(block=False)

        self.assertIsNone(self.service.listener_thread)
        self.assertFalse(self.service.running)
        self.assertIsNone(self.service.ingest_socket)

    def test_blocking_start_returns(self):
        self.service.request_stop()

        thread = threading.Thread(target=self.service.start, daemon=True)
        thread.start()
        thread.join(timeout=3)

        self.assertFalse(thread.is_alive())
        self.assertIsNone(self.service.ingest_socket)


class TestMain(unittest.TestCase):
    """Process exit codes and diagnostics of the console entry point."""

    def setUp(self):
        relay_service._service_instance = None
        self.addCleanup(setattr, relay_service, "_service_instance", None)

        for target, kwargs in (
            ("osc_bridge.relay_service.setup_logging", {}),
            ("osc_bridge.relay_service.get_local_ips", {"return_value": []}),
            ("signal.signal", {}),
        ):
            patcher = mock.patch(target, **kwargs)
            patcher.start()
            self.addCleanup(patcher.stop)

    def run_main(self, **load_kwargs):
        stderr = io.StringIO()
        with mock.patch("osc_bridge.relay_service.load_configuration", **load_kwargs), \
                contextlib.redirect_stdout(io.StringIO()), contextlib.redirect_stderr(stderr):
            code = relay_service.main()
        return code, stderr.getvalue()

    def test_port_in_use_exits_one(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        blocker.bind(("127.0.0.1", 0))
        self.addCleanup(blocker.close)

        code, stderr = self.run_main(return_value=local_config(osc_port=blocker.getsockname()[1]))

        self.assertEqual(code, 1)
        self.assertIn("Fatal:", stderr)

    def test_configuration_error_reported_once(self):
        code, stderr = self.run_main(side_effect=ConfigurationError("osc_port must be between 0 and 65535"))

        self.assertEqual(code, 1)
        self.assertEqual(stderr.count("osc_port must be between 0 and 65535"), 1)
        self.assertTrue(stderr.startswith("Fatal:"))

    def test_unexpected_error_logged(self):
        with self.assertLogs(level="CRITICAL") as logs:
            code, stderr = self.run_main(side_effect=RuntimeError("boom"))

        self.assertEqual(code, 1)
        self.assertIn("Fatal: boom", logs.output[0])
        self.assertNotIn("boom", stderr)

    def test_sigterm_exits_zero(self):
        result = {}

        def run():
            result["code"] = relay_service.main()

        with mock.patch("osc_bridge.relay_service.load_configuration", return_value=local_config()):
            thread = threading.Thread(target=run, daemon=True)
            thread.start()
            self.assertTrue(wait_until(lambda: relay_service._service_instance is not None))

            relay_service.signal_handler(signal.SIGTERM, None)
            thread.join(timeout=5)

        self.assertFalse(thread.is_alive())
        self.assertEqual(result["code"], 0)
        signal.signal.assert_any_call(signal.SIGTERM, relay_service.signal_handler)
        signal.signal.assert_any_call(signal.SIGINT, relay_service.signal_handler)


if __name__ == '__main__':
    unittest.main()
