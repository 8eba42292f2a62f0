"""
Farm Aggregator
矿场数据聚合

Runs one collection cycle: heartbeat, farm snapshot, per-worker metrics and
farm-wide summary, all published to MQTT in a fixed order.

Failures are contained at the smallest scope: a failed publish is only
logged by the publisher, a failed worker fetch skips that worker, and
anything else aborts the cycle with a message on the farm error topic.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import MonitorConfig
from .errors import FetchError
from .extractors import extract_cpu_temperature, extract_hashrate, format_uptime
from .models import CycleResult, CycleTotals, WorkerDetail, WorkerSummary
from .mqtt_packets import MAX_REMAINING_LENGTH

logger = logging.getLogger(__name__)

HEARTBEAT_TOPIC = "mining/heartbeat"
STATUS_TOPIC = "mining/status"
HEARTBEAT_VALUE = "alive"
DEFAULT_FLIGHT_SHEET = "Not Assigned"
TRUNCATION_MARK = "..."


def format_number(value: float) -> str:
    """Integers without a decimal point, everything else as-is"""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def format_efficiency(online: int, total: int) -> str:
    if total <= 0:
        return "0"
    return f"{online / total * 100:.1f}"


def iso_timestamp(unix_time: float) -> str:
    return datetime.fromtimestamp(int(unix_time), tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def fit_message(topic: str, message: str, limit: int = MAX_REMAINING_LENGTH) -> str:
    """Shorten message so topic and message fit in one PUBLISH packet"""
    budget = limit - 2 - len(topic.encode("utf-8"))
    encoded = message.encode("utf-8")
    if len(encoded) <= budget:
        return message
    cut = max(0, budget - len(TRUNCATION_MARK))
    return encoded[:cut].decode("utf-8", errors="ignore") + TRUNCATION_MARK


class FarmTopics:
    """Topic names for one farm"""

    def __init__(self, farm_id: str):
        self.base = f"mining/farm/{farm_id}"

    @property
    def error(self) -> str:
        return f"{self.base}/error"

    @property
    def timestamp(self) -> str:
        return f"{self.base}/timestamp"

    def workers(self, metric: str) -> str:
        return f"{self.base}/workers/{metric}"

    def worker(self, worker_id: str, metric: str) -> str:
        return f"{self.base}/workers/{worker_id}/{metric}"

    def summary(self, metric: str) -> str:
        return f"{self.base}/summary/{metric}"


class FarmAggregator:
    """
    One-cycle telemetry pipeline

    Args:
        config: Monitor configuration (farm id)
        source: Object with fetch_farm_snapshot / fetch_worker_detail
        publisher: Object with publish(topic, value) -> bool
        clock: Returns current unix time, used for uptime and timestamp
    """

    def __init__(self, config: MonitorConfig, source, publisher,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.source = source
        self.publisher = publisher
        self.clock = clock
        self.topics = FarmTopics(config.farm_id)
        self._result: Optional[CycleResult] = None

    def _publish(self, topic: str, value) -> bool:
        message = str(value)
        self._result.publications.append((topic, message))
        return self.publisher.publish(topic, message)

    def run_cycle(self) -> CycleResult:
        """Collect and publish once. Never raises."""
        self._result = CycleResult()
        start_time = time.time()

        try:
            self._collect()
        except Exception as e:
            logger.error(f"Collection cycle failed: {e}", exc_info=True)
            self._result.ok = False
            self._result.error = str(e)
            try:
                self._publish_error(f"Collection cycle failed: {e}")
            except Exception as publish_error:
                logger.error(f"Failed to report cycle error: {publish_error}")

        result = self._result
        self._result = None
        logger.info(
            f"Cycle finished in {time.time() - start_time:.1f}s: "
            f"{len(result.publications)} publications, ok={result.ok}"
        )
        return result

    def _collect(self):
        farm_id = self.config.farm_id
        totals = self._result.totals

        self._publish(HEARTBEAT_TOPIC, HEARTBEAT_VALUE)

        try:
            snapshot = self.source.fetch_farm_snapshot(farm_id)
        except FetchError as e:
            logger.error(f"Failed to fetch farm {farm_id}: {e.message}")
            self._abort(f"Failed to fetch farm data: {e.message}")
            return

        if not snapshot:
            logger.warning(f"Farm {farm_id} returned no workers")
            self._abort(f"No workers found for farm {farm_id}")
            return

        self._publish(self.topics.timestamp, iso_timestamp(self.clock()))
        self._publish(self.topics.workers("count"), snapshot.total_count)
        self._publish(self.topics.workers("online"), snapshot.online_count)
        self._publish(self.topics.workers("offline"), snapshot.offline_count)

        for worker in snapshot.workers:
            self._publish(self.topics.worker(worker.id, "name"), worker.name)
            self._publish(self.topics.worker(worker.id, "online"), "true" if worker.online else "false")

            try:
                detail = self.source.fetch_worker_detail(farm_id, worker.id)
                self._publish_worker(worker, detail, totals)
            except FetchError as e:
                logger.warning(f"Skipping worker {worker.name} ({worker.id}): {e.message}")
            except Exception as e:
                logger.error(f"Error processing worker {worker.name} ({worker.id}): {e}", exc_info=True)

        self._publish(self.topics.summary("total_hashrate"), f"{totals.total_hashrate:.3f}")
        if totals.average_uptime is not None:
            self._publish(self.topics.summary("average_uptime"), totals.average_uptime)
        if totals.average_cpu_temp is not None:
            self._publish(self.topics.summary("average_cpu_temp"), f"{totals.average_cpu_temp:.1f}")
        self._publish(self.topics.summary("efficiency"),
                      format_efficiency(snapshot.online_count, snapshot.total_count))

        logger.info(
            f"Farm {farm_id}: {snapshot.online_count}/{snapshot.total_count} online, "
            f"total hashrate {totals.total_hashrate:.3f}"
        )

    def _abort(self, message: str):
        self._result.ok = False
        self._result.error = message
        self._publish_error(message)

    def _publish_error(self, message: str) -> bool:
        topic = self.topics.error
        return self._publish(topic, fit_message(topic, message))

    def _publish_worker(self, worker: WorkerSummary, detail: WorkerDetail, totals: CycleTotals):
        topic = self.topics.worker

        self._publish(topic(worker.id, "flight_sheet"), detail.flight_sheet_name or DEFAULT_FLIGHT_SHEET)

        hashrate = extract_hashrate(detail)
        self._publish(topic(worker.id, "hashrate"), f"{hashrate:.3f}")

        uptime = 0
        if detail.boot_time:
            uptime = max(0, int(self.clock()) - detail.boot_time)
        self._publish(topic(worker.id, "uptime"), uptime)
        self._publish(topic(worker.id, "uptime_friendly"), format_uptime(uptime))

        cpu_temp = extract_cpu_temperature(detail)
        if cpu_temp is not None:
            self._publish(topic(worker.id, "cpu_temperature"), format_number(cpu_temp))
        if detail.power_draw is not None:
            self._publish(topic(worker.id, "power_draw"), format_number(detail.power_draw))
        if detail.last_seen is not None:
            self._publish(topic(worker.id, "last_seen"), detail.last_seen)

        totals.total_hashrate += hashrate
        if cpu_temp is not None:
            totals.cpu_temp_sum += cpu_temp
            totals.cpu_temp_count += 1
        if worker.online and uptime > 0:
            totals.uptime_sum += uptime
            totals.online_count_with_uptime += 1
