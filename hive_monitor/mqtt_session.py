"""
MQTT Publish Session
MQTT发布会话

One TCP connection: connect, CONNECT/CONNACK handshake, QoS 0 publishes,
close. MqttPublisher opens a fresh session for every message so a broker
restart never leaves a stale connection behind, and it never raises.

Usage:
    from hive_monitor.mqtt_session import MqttSession

    with MqttSession("192.168.1.10") as session:
        session.publish("mining/heartbeat", "alive")
"""

import logging
import socket
import time
from enum import Enum
from typing import Callable, Optional

from .config import MonitorConfig
from .errors import ConnectError, EncodingError, PublishError
from .mqtt_packets import decode_connack, encode_connect, encode_publish

logger = logging.getLogger(__name__)

CONNACK_READ_SIZE = 10
CONNACK_LENGTH = 4


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_CONNACK = "awaiting_connack"
    READY = "ready"
    FAILED = "failed"


class MqttSession:
    """Single broker connection over a raw TCP socket"""

    DEFAULT_PORT = 1883
    DEFAULT_CONNECT_TIMEOUT = 5.0
    DEFAULT_IO_TIMEOUT = 2.0

    def __init__(self, broker: str, port: int = DEFAULT_PORT,
                 client_id: str = "hive-monitor",
                 username: Optional[str] = None,
                 password: Optional[str] = None,
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
                 io_timeout: float = DEFAULT_IO_TIMEOUT):
        self.broker = broker
        self.port = port
        self.client_id = client_id
        self.username = username
        self.password = password
        self.connect_timeout = connect_timeout
        self.io_timeout = io_timeout
        self.state = ConnectionState.DISCONNECTED
        self._sock: Optional[socket.socket] = None

    @property
    def is_ready(self) -> bool:
        return self.state is ConnectionState.READY

    def open(self) -> "MqttSession":
        """
        Connect and complete the CONNECT/CONNACK handshake

        Raises:
            ConnectError: unreachable, timeout or rejected
            EncodingError: If the CONNECT packet is too long
        """
        packet = encode_connect(self.client_id, self.username, self.password)

        self.state = ConnectionState.CONNECTING
        try:
            self._sock = socket.create_connection((self.broker, self.port), timeout=self.connect_timeout)
        except OSError as e:
            self.state = ConnectionState.FAILED
            raise ConnectError(f"Cannot connect: {e}", self.broker, self.port, ConnectError.UNREACHABLE)

        try:
            self._sock.sendall(packet)
            self.state = ConnectionState.AWAITING_CONNACK
            reply = self._read_connack()
        except OSError as e:
            self._fail()
            raise ConnectError(f"Handshake failed: {e}", self.broker, self.port, ConnectError.UNREACHABLE)

        connack = decode_connack(reply)
        if not connack.accepted:
            self._fail()
            raise ConnectError(
                f"CONNECT rejected: {connack.reason}",
                self.broker, self.port, ConnectError.REJECTED, connack.return_code,
            )

        self.state = ConnectionState.READY
        logger.debug(f"Connected to MQTT broker {self.broker}:{self.port} as {self.client_id}")
        return self

    def _read_connack(self) -> bytes:
        """
        Read until a full CONNACK arrives or io_timeout runs out

        A short reply is returned as-is and decodes as malformed.
        """
        reply = b''
        deadline = time.monotonic() + self.io_timeout
        while len(reply) < CONNACK_LENGTH:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            self._sock.settimeout(remaining)
            try:
                chunk = self._sock.recv(CONNACK_READ_SIZE - len(reply))
            except socket.timeout:
                break
            if not chunk:
                break
            reply += chunk

        if not reply:
            self._fail()
            raise ConnectError(f"No CONNACK within {self.io_timeout}s", self.broker, self.port, ConnectError.TIMEOUT)
        return reply

    def publish(self, topic: str, message: str) -> None:
        """
        Write one QoS 0 PUBLISH. No acknowledgement is awaited.

        Raises:
            PublishError: Session not ready or write failed
            EncodingError: Topic plus message too long for one packet
        """
        if not self.is_ready:
            raise PublishError(f"Session not ready (state={self.state.value})", topic)

        packet = encode_publish(topic, message)
        try:
            self._sock.sendall(packet)
        except OSError as e:
            self._fail()
            raise PublishError(f"Write failed: {e}", topic)

    def close(self) -> None:
        """Best-effort shutdown; errors are ignored"""
        sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            try:
                sock.close()
            except OSError:
                pass
        if self.state is not ConnectionState.FAILED:
            self.state = ConnectionState.DISCONNECTED

    def _fail(self):
        self.close()
        self.state = ConnectionState.FAILED

    def __enter__(self) -> "MqttSession":
        if not self.is_ready:
            self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class MqttPublisher:
    """
    Fire-and-forget publisher used by the aggregator

    Each call opens its own session, publishes and closes. Any connect,
    write or encoding failure is logged and reported as False so a single
    bad message never aborts a collection cycle.
    """

    def __init__(self, config: MonitorConfig,
                 session_factory: Callable[..., MqttSession] = MqttSession):
        self.config = config
        self.session_factory = session_factory
        self.published = 0
        self.failed = 0

    def _new_session(self) -> MqttSession:
        return self.session_factory(
            self.config.mqtt_broker,
            self.config.mqtt_port,
            client_id=self.config.mqtt_client_id,
            username=self.config.mqtt_username,
            password=self.config.mqtt_password,
            connect_timeout=self.config.connect_timeout,
            io_timeout=self.config.io_timeout,
        )

    def publish(self, topic: str, value) -> bool:
        message = str(value)
        start_time = time.time()
        session = self._new_session()
        try:
            session.open()
            session.publish(topic, message)
        except EncodingError as e:
            self.failed += 1
            logger.error(f"MQTT packet too large for {topic}: {e.message}")
            return False
        except ConnectError as e:
            self.failed += 1
            logger.warning(f"MQTT connect failed for {topic}: {e.message}")
            return False
        except PublishError as e:
            self.failed += 1
            logger.warning(f"MQTT publish failed for {topic}: {e.message}")
            return False
        finally:
            session.close()

        self.published += 1
        latency_ms = (time.time() - start_time) * 1000
        logger.debug(f"Published {topic} = {message} ({latency_ms:.1f}ms)")
        return True

    def reset_counters(self):
        self.published = 0
        self.failed = 0
