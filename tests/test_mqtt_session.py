"""
Unit Tests for MQTT Publish Session
MQTT发布会话单元测试

Uses a mock TCP broker to answer CONNECT and capture PUBLISH packets
"""

import socket
import threading
import time

import pytest

from hive_monitor.config import MonitorConfig
from hive_monitor.errors import ConnectError, PublishError
from hive_monitor.mqtt_packets import decode_fixed_header
from hive_monitor.mqtt_session import ConnectionState, MqttPublisher, MqttSession


def split_packets(data: bytes):
    """Split a captured byte stream into (type, payload) pairs"""
    packets = []
    while len(data) >= 2:
        packet_type, _, remaining = decode_fixed_header(data)
        packets.append((packet_type, data[2:2 + remaining]))
        data = data[2 + remaining:]
    return packets


def publish_fields(body: bytes):
    topic_length = int.from_bytes(body[:2], "big")
    return body[2:2 + topic_length].decode(), body[2 + topic_length:].decode()


class MockMqttBroker:
    """Mock TCP server answering CONNECT with a configurable CONNACK"""

    def __init__(self, host='127.0.0.1', port=0):
        self.host = host
        self.port = port
        self.server_socket = None
        self.running = False
        self.connack = b"\x20\x02\x00\x00"  # bytes, or a list of chunks sent chunk_delay apart
        self.chunk_delay = 0.05
        self.connections = []
        self._thread = None

    def start(self):
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.server_socket.bind((self.host, self.port))
        self.port = self.server_socket.getsockname()[1]
        self.server_socket.listen(5)
        self.server_socket.settimeout(1.0)
        self.running = True

        self._thread = threading.Thread(target=self._serve)
        self._thread.daemon = True
        self._thread.start()
        time.sleep(0.1)

    def _read_packet(self, client_socket):
        header = b''
        while len(header) < 2:
            chunk = client_socket.recv(2 - len(header))
            if not chunk:
                return header
            header += chunk
        body = b''
        while len(body) < header[1]:
            chunk = client_socket.recv(header[1] - len(body))
            if not chunk:
                break
            body += chunk
        return header + body

    def _serve(self):
        while self.running:
            try:
                client_socket, addr = self.server_socket.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            client_socket.settimeout(1.0)
            received = b''
            try:
                received += self._read_packet(client_socket)
                chunks = self.connack if isinstance(self.connack, list) else [self.connack]
                for index, chunk in enumerate(c for c in chunks if c):
                    if index:
                        time.sleep(self.chunk_delay)
                    client_socket.sendall(chunk)
                while True:
                    chunk = client_socket.recv(4096)
                    if not chunk:
                        break
                    received += chunk
            except (socket.timeout, OSError):
                pass
            finally:
                self.connections.append(received)
                client_socket.close()

    def packets(self):
        return [split_packets(data) for data in self.connections]

    def wait_for_connections(self, count, timeout=3.0):
        deadline = time.time() + timeout
        while len(self.connections) < count and time.time() < deadline:
            time.sleep(0.02)

    def stop(self):
        self.running = False
        if self.server_socket:
            self.server_socket.close()
        if self._thread:
            self._thread.join(timeout=2)


@pytest.fixture
def broker():
    server = MockMqttBroker()
    server.start()
    yield server
    server.stop()


def _free_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class TestMqttSession:
    """Session lifecycle"""

    def test_connect_and_publish(self, broker):
        session = MqttSession('127.0.0.1', broker.port, client_id='test-client', io_timeout=1)
        session.open()
        assert session.state is ConnectionState.READY

        session.publish('mining/heartbeat', 'alive')
        session.close()
        assert session.state is ConnectionState.DISCONNECTED

        broker.wait_for_connections(1)
        packets = broker.packets()[0]

        assert packets[0][0] == 1  # CONNECT
        assert packets[0][1].endswith(b'test-client')
        assert packets[1][0] == 3  # PUBLISH
        assert publish_fields(packets[1][1]) == ('mining/heartbeat', 'alive')

    def test_context_manager(self, broker):
        with MqttSession('127.0.0.1', broker.port, io_timeout=1) as session:
            session.publish('a/b', '1')
            session.publish('a/c', '2')

        broker.wait_for_connections(1)
        topics = [publish_fields(body)[0] for kind, body in broker.packets()[0] if kind == 3]
        assert topics == ['a/b', 'a/c']

    def test_rejected_connack(self, broker):
        broker.connack = b"\x20\x02\x00\x05"
        session = MqttSession('127.0.0.1', broker.port, io_timeout=1)

        with pytest.raises(ConnectError) as exc_info:
            session.open()

        assert exc_info.value.error_type == ConnectError.REJECTED
        assert exc_info.value.return_code == 5
        assert session.state is ConnectionState.FAILED

    def test_connack_split_across_segments(self, broker):
        broker.connack = [b"\x20", b"\x02\x00\x00"]
        session = MqttSession('127.0.0.1', broker.port, io_timeout=1)

        session.open()

        assert session.state is ConnectionState.READY
        session.close()

    def test_truncated_connack_is_malformed(self, broker):
        broker.connack = b"\x20\x02"
        session = MqttSession('127.0.0.1', broker.port, io_timeout=0.3)

        with pytest.raises(ConnectError) as exc_info:
            session.open()

        assert exc_info.value.error_type == ConnectError.REJECTED
        assert exc_info.value.return_code is None
        assert "Malformed CONNACK" in str(exc_info.value)

    def test_silent_broker_times_out(self, broker):
        broker.connack = b''
        session = MqttSession('127.0.0.1', broker.port, io_timeout=0.3)

        with pytest.raises(ConnectError) as exc_info:
            session.open()

        assert exc_info.value.error_type == ConnectError.TIMEOUT
        assert session.state is ConnectionState.FAILED

    def test_unreachable_broker(self):
        session = MqttSession('127.0.0.1', _free_port(), connect_timeout=1)

        with pytest.raises(ConnectError) as exc_info:
            session.open()

        assert exc_info.value.error_type == ConnectError.UNREACHABLE
        assert session.state is ConnectionState.FAILED

    def test_publish_requires_ready_session(self):
        session = MqttSession('127.0.0.1')

        with pytest.raises(PublishError, match="not ready"):
            session.publish('a/b', 'x')

    def test_close_is_idempotent(self):
        session = MqttSession('127.0.0.1')
        session.close()
        session.close()
        assert session.state is ConnectionState.DISCONNECTED


class TestMqttPublisher:
    """Per-message publisher"""

    def _config(self, port, **kwargs):
        return MonitorConfig(
            hive_api_token='t', farm_id='1', mqtt_broker='127.0.0.1', mqtt_port=port,
            io_timeout=1, connect_timeout=1, enable_file_logging=False, **kwargs
        )

    def test_fresh_connection_per_message(self, broker):
        publisher = MqttPublisher(self._config(broker.port))

        assert publisher.publish('mining/heartbeat', 'alive') is True
        assert publisher.publish('mining/farm/1/workers/count', 3) is True

        broker.wait_for_connections(2)
        assert len(broker.connections) == 2
        assert publish_fields(broker.packets()[1][1][1]) == ('mining/farm/1/workers/count', '3')
        assert publisher.published == 2

    def test_credentials_sent(self, broker):
        publisher = MqttPublisher(self._config(broker.port, mqtt_username='hive', mqtt_password='pw'))
        publisher.publish('a/b', 'x')

        broker.wait_for_connections(1)
        connect_body = broker.packets()[0][0][1]
        assert connect_body[7] == 0xC0
        assert connect_body.endswith(b'\x00\x04hive\x00\x02pw')

    def test_unreachable_returns_false(self):
        publisher = MqttPublisher(self._config(_free_port()))

        assert publisher.publish('a/b', 'x') is False
        assert publisher.failed == 1

    def test_oversized_message_returns_false(self, broker):
        publisher = MqttPublisher(self._config(broker.port))

        assert publisher.publish('mining/farm/1/error', 'x' * 300) is False
        assert publisher.failed == 1
        assert publisher.published == 0
