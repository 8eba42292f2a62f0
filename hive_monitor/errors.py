"""
Hive Mining Monitor - Error Types
监控器错误类型

Every failure carries an ``error_type`` string so log lines and the MQTT
error topic can name what went wrong without inspecting the class.
"""

from datetime import datetime, timezone
from typing import Optional


class MonitorError(Exception):
    """Base error with structured details"""

    def __init__(self, message: str, error_type: str = "unknown"):
        self.message = message
        self.error_type = error_type
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(f"[{error_type}] {message}")


class ConfigError(MonitorError):
    """Required configuration missing or invalid. Fatal at startup."""

    def __init__(self, message: str, problems: Optional[list] = None):
        self.problems = problems or []
        super().__init__(message, "config")


class EncodingError(MonitorError):
    """Packet would not fit the single-byte remaining length field"""

    def __init__(self, message: str, remaining_length: int = 0):
        self.remaining_length = remaining_length
        super().__init__(message, "encoding")


class ConnectError(MonitorError):
    """Broker unreachable, silent, or CONNECT rejected"""

    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    REJECTED = "rejected"

    def __init__(self, message: str, host: str = "", port: int = 1883,
                 error_type: str = UNREACHABLE, return_code: Optional[int] = None):
        self.host = host
        self.port = port
        self.return_code = return_code
        super().__init__(f"{message} (broker={host}:{port})", error_type)


class PublishError(MonitorError):
    """PUBLISH could not be written to the session"""

    def __init__(self, message: str, topic: str = ""):
        self.topic = topic
        super().__init__(message, "publish")


class FetchError(MonitorError):
    """HiveOS API request failed for a farm or worker"""

    def __init__(self, message: str, url: str = "", error_type: str = "http",
                 status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message, error_type)
