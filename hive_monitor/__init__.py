"""
Hive Mining Monitor - HiveOS矿场MQTT监控
HiveOS farm telemetry republished to MQTT

模块结构:
- mqtt_packets.py: MQTT 3.1.1 CONNECT/PUBLISH/CONNACK codec
- mqtt_session.py: Raw TCP publish session and per-message publisher
- extractors.py: Hashrate / CPU temperature extraction, uptime formatting
- hive_client.py: HiveOS API client
- aggregator.py: One collection-and-publish cycle
- scheduler.py: Interval loop with crash backoff
- main.py: CLI entry point
"""

__version__ = "1.0.0"

from .errors import ConfigError, ConnectError, EncodingError, FetchError, MonitorError, PublishError
from .config import MonitorConfig
from .mqtt_session import MqttPublisher, MqttSession
from .aggregator import FarmAggregator
from .scheduler import MonitorScheduler

__all__ = [
    'ConfigError',
    'ConnectError',
    'EncodingError',
    'FetchError',
    'MonitorError',
    'PublishError',
    'MonitorConfig',
    'MqttPublisher',
    'MqttSession',
    'FarmAggregator',
    'MonitorScheduler',
]
