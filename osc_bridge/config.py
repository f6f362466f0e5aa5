"""
Configuration management for the OSC bridge relay.

Configuration is loaded from config.yaml file. When no file is found the
built-in defaults are used, and the OSC_PORT / STREAM_PORT environment
variables override the listening ports.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

from .exceptions import ConfigurationError


@dataclass
class RelayConfig:
    """
    Configuration for the OSC bridge relay.
    """

    # Network settings - OSC ingress (UDP)
    osc_host: str = "0.0.0.0"
    osc_port: int = 8000

    # Network settings - Subscriber egress (WebSocket)
    stream_host: str = "0.0.0.0"
    stream_port: int = 8080

    # Liveness monitor
    status_interval: float = 5.0
    activity_window_ms: int = 5000
    log_every: int = 10

    # Subscribers
    subscriber_queue_size: int = 256
    max_subscribers: int = 0  # 0 = unlimited

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None

    # Telemetry - InfluxDB
    telemetry_enabled: bool = False
    influxdb_host: str = "localhost:8086"
    influxdb_database: str = "osc_bridge"
    influxdb_token: str = ""

    # Performance
    socket_buffer_size: int = 65536
    socket_poll_interval: float = 0.5
    shutdown_timeout: float = 2.0

    def validate(self):
        """
        Validate configuration values.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        # Validate ports (0 asks the OS for an ephemeral port)
        if not (0 <= self.osc_port <= 65535):
            raise ConfigurationError(f"Invalid osc_port: {self.osc_port}")
        if not (0 <= self.stream_port <= 65535):
            raise ConfigurationError(f"Invalid stream_port: {self.stream_port}")

        # Validate intervals
        if self.status_interval <= 0:
            raise ConfigurationError(f"Invalid status_interval: {self.status_interval}")
        if self.activity_window_ms <= 0:
            raise ConfigurationError(f"Invalid activity_window_ms: {self.activity_window_ms}")
        if self.socket_poll_interval <= 0:
            raise ConfigurationError(f"Invalid socket_poll_interval: {self.socket_poll_interval}")
        if self.shutdown_timeout < 0:
            raise ConfigurationError(f"Invalid shutdown_timeout: {self.shutdown_timeout}")
        if self.log_every < 0:
            raise ConfigurationError(f"Invalid log_every: {self.log_every}")

        # Validate subscriber limits
        if self.subscriber_queue_size < 1:
            raise ConfigurationError(f"Invalid subscriber_queue_size: {self.subscriber_queue_size}")
        if self.max_subscribers < 0:
            raise ConfigurationError(f"Invalid max_subscribers: {self.max_subscribers}")

        if self.socket_buffer_size < 1:
            raise ConfigurationError(f"Invalid socket_buffer_size: {self.socket_buffer_size}")

        # Validate log level
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if self.log_level.upper() not in valid_levels:
            raise ConfigurationError(f"Invalid log_level: {self.log_level}. Must be one of {valid_levels}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'RelayConfig':
        """
        Build configuration from the nested structure of config.yaml.

        Args:
            data: Parsed YAML document (may be None or empty)

        Returns:
            RelayConfig instance
        """
        if not data:
            return cls()

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be a mapping, got {type(data).__name__}")

        config_dict = {}

        network = data.get('network') or {}
        if 'osc' in network:
            config_dict['osc_host'] = network['osc'].get('host', cls.osc_host)
            config_dict['osc_port'] = network['osc'].get('port', cls.osc_port)

        if 'stream' in network:
            config_dict['stream_host'] = network['stream'].get('host', cls.stream_host)
            config_dict['stream_port'] = network['stream'].get('port', cls.stream_port)

        if 'monitor' in data:
            config_dict['status_interval'] = data['monitor'].get('status_interval', cls.status_interval)
            config_dict['activity_window_ms'] = data['monitor'].get('activity_window_ms', cls.activity_window_ms)
            config_dict['log_every'] = data['monitor'].get('log_every', cls.log_every)

        if 'subscribers' in data:
            config_dict['subscriber_queue_size'] = data['subscribers'].get('queue_size', cls.subscriber_queue_size)
            config_dict['max_subscribers'] = data['subscribers'].get('max_subscribers', cls.max_subscribers)

        if 'logging' in data:
            config_dict['log_level'] = data['logging'].get('level', cls.log_level)
            config_dict['log_format'] = data['logging'].get('format', cls.log_format)
            config_dict['log_file'] = data['logging'].get('file', cls.log_file)

        if 'telemetry' in data:
            config_dict['telemetry_enabled'] = data['telemetry'].get('enabled', cls.telemetry_enabled)
            config_dict['influxdb_host'] = data['telemetry'].get('influxdb_host', cls.influxdb_host)
            config_dict['influxdb_database'] = data['telemetry'].get('influxdb_database', cls.influxdb_database)
            config_dict['influxdb_token'] = data['telemetry'].get('influxdb_token', cls.influxdb_token)

        if 'performance' in data:
            config_dict['socket_buffer_size'] = data['performance'].get('socket_buffer_size', cls.socket_buffer_size)
            config_dict['socket_poll_interval'] = data['performance'].get('socket_poll_interval', cls.socket_poll_interval)
            config_dict['shutdown_timeout'] = data['performance'].get('shutdown_timeout', cls.shutdown_timeout)

        return cls(**config_dict)

    @classmethod
    def from_yaml(cls, path: str) -> 'RelayConfig':
        """
        Load configuration from YAML file.

        Args:
            path: Path to YAML config file

        Returns:
            RelayConfig instance

        Raises:
            ConfigurationError: If file cannot be loaded or parsed
        """
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML config: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to load config from {path}: {e}")

        try:
            return cls.from_dict(data)
        except ConfigurationError:
            raise
        except (AttributeError, TypeError) as e:
            raise ConfigurationError(f"Malformed config in {path}: {e}")

    def apply_environment(self, environ: Optional[Dict[str, str]] = None):
        """
        Override listening ports from OSC_PORT / STREAM_PORT.

        Raises:
            ConfigurationError: If a variable is set but not an integer
        """
        if environ is None:
            environ = os.environ

        for variable, attribute in (('OSC_PORT', 'osc_port'), ('STREAM_PORT', 'stream_port')):
            value = environ.get(variable)
            if value is None or value == "":
                continue
            try:
                setattr(self, attribute, int(value))
            except ValueError:
                raise ConfigurationError(f"Invalid {variable}: {value!r}")

    def connection_info(self) -> Dict[str, Any]:
        """Ports and URLs for display by other tools."""
        return {
            "osc_port": self.osc_port,
            "stream_port": self.stream_port,
            "stream_url": f"ws://localhost:{self.stream_port}",
            "activity_window_ms": self.activity_window_ms,
        }

    def __str__(self) -> str:
        """String representation for logging."""
        return (
            f"RelayConfig("
            f"osc={self.osc_host}:{self.osc_port}, "
            f"stream={self.stream_host}:{self.stream_port}, "
            f"queue_size={self.subscriber_queue_size}, "
            f"max_subscribers={self.max_subscribers or 'unlimited'}, "
            f"log_level={self.log_level})"
        )


def load_configuration(config_path: str = "osc_bridge/config.yaml") -> RelayConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config.yaml file (default: osc_bridge/config.yaml)

    Returns:
        Validated RelayConfig

    Raises:
        ConfigurationError: If configuration file is invalid
    """
    # Try default path first if not absolute
    if not os.path.isabs(config_path):
        # Try relative to current directory
        if not os.path.exists(config_path):
            # Try relative to script directory
            script_dir = os.path.dirname(os.path.abspath(__file__))
            config_path = os.path.join(script_dir, "config.yaml")

    if os.path.exists(config_path):
        config = RelayConfig.from_yaml(config_path)
    else:
        config = RelayConfig()

    config.apply_environment()
    config.validate()

    return config
