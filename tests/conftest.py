"""
Hive Mining Monitor - Test Configuration
测试配置

Shared fixtures: a fixed configuration, an in-memory HiveOS source and a
publisher that records instead of touching the network.
"""

import pytest

from hive_monitor.config import MonitorConfig
from hive_monitor.errors import FetchError
from hive_monitor.models import FarmSnapshot, WorkerDetail, WorkerSummary

FARM_ID = "4242"
NOW = 1_700_000_000


class RecordingPublisher:
    """Stands in for MqttPublisher"""

    def __init__(self, fail_topics=()):
        self.messages = []
        self.fail_topics = set(fail_topics)

    def publish(self, topic, value):
        self.messages.append((topic, str(value)))
        return topic not in self.fail_topics

    def topics(self):
        return [topic for topic, _ in self.messages]

    def value(self, topic):
        for t, v in self.messages:
            if t == topic:
                return v
        raise KeyError(topic)


class FakeHiveSource:
    """In-memory telemetry source; a value of FetchError raises it"""

    def __init__(self, workers=(), details=None, farm_error=None):
        self.workers = tuple(workers)
        self.details = details or {}
        self.farm_error = farm_error
        self.detail_calls = []

    def fetch_farm_snapshot(self, farm_id):
        if self.farm_error:
            raise self.farm_error
        return FarmSnapshot(self.workers)

    def fetch_worker_detail(self, farm_id, worker_id):
        self.detail_calls.append(worker_id)
        detail = self.details.get(worker_id)
        if isinstance(detail, Exception):
            raise detail
        if detail is None:
            raise FetchError("Worker not found", f"/farms/{farm_id}/workers/{worker_id}", "http", 404)
        return WorkerDetail.from_record(detail)


@pytest.fixture
def config():
    return MonitorConfig(
        hive_api_token="test-token",
        farm_id=FARM_ID,
        mqtt_broker="127.0.0.1",
        run_interval=300,
        enable_file_logging=False,
    )


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def two_worker_source():
    """Worker A online with full stats, worker B offline and unreachable"""
    workers = [
        WorkerSummary(id="101", name="rig-a", online=True),
        WorkerSummary(id="102", name="rig-b", online=False),
    ]
    details = {
        "101": {
            "id": 101,
            "name": "rig-a",
            "flight_sheet": {"id": 7, "name": "ETC-2miners"},
            "stats": {
                "online": True,
                "boot_time": NOW - 3700,
                "power_draw": 850,
                "stats_time": NOW - 20,
            },
            "hardware_stats": {"cputemp": [55]},
            "miners_summary": {"hashrates": [{"miner": "lolminer", "hash": 120.5}]},
        },
        "102": FetchError("Connection error: reset", "/farms/4242/workers/102", "connection"),
    }
    return FakeHiveSource(workers, details)
