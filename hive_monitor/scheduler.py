"""
Monitor Scheduler
监控调度器

Runs the aggregator forever on a fixed interval using APScheduler's
BlockingScheduler, or exactly once.

Each cycle schedules its successor as a one-off date job: the normal
interval after a completed cycle, the shorter backoff after a cycle that
raised past the aggregator's own error handling.

    IDLE -> RUNNING -> SLEEPING -> RUNNING -> ... -> STOPPED
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.date import DateTrigger

from .aggregator import STATUS_TOPIC
from .config import MonitorConfig

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class MonitorScheduler:
    """Drives FarmAggregator cycles"""

    def __init__(self, config: MonitorConfig, aggregator, publisher, scheduler=None):
        self.config = config
        self.aggregator = aggregator
        self.publisher = publisher
        self.scheduler = scheduler or BlockingScheduler(
            timezone=timezone.utc,
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 300
            }
        )
        self.state = SchedulerState.IDLE
        self.cycles = 0
        self.failed_cycles = 0
        self.next_delay: Optional[int] = None

    def run_once(self):
        """Run a single cycle without entering the loop"""
        self.state = SchedulerState.RUNNING
        try:
            return self.aggregator.run_cycle()
        finally:
            self.cycles += 1
            self.state = SchedulerState.STOPPED

    def start(self):
        """Publish a startup status and block running cycles until stopped"""
        if self.state is not SchedulerState.IDLE:
            logger.info("Monitor scheduler already started")
            return

        self.publisher.publish(
            STATUS_TOPIC,
            f"Mining monitor started for farm {self.config.farm_id} "
            f"(interval {self.config.run_interval}s)"
        )
        logger.info(f"🚀 Monitor scheduler starting: every {self.config.run_interval}s")

        self.state = SchedulerState.SLEEPING
        self._schedule_next(0)
        self.scheduler.start()

    def _run_cycle_job(self):
        if self.state is SchedulerState.STOPPED:
            return

        self.state = SchedulerState.RUNNING
        try:
            self.aggregator.run_cycle()
            delay = self.config.run_interval
        except Exception as e:
            self.failed_cycles += 1
            delay = self.config.backoff_interval
            logger.error(f"❌ Monitor cycle crashed, retrying in {delay}s: {e}", exc_info=True)
        finally:
            self.cycles += 1

        if self.state is SchedulerState.STOPPED:
            return

        self.state = SchedulerState.SLEEPING
        logger.debug(f"Next cycle in {delay}s")
        self._schedule_next(delay)

    def _schedule_next(self, delay: int):
        self.next_delay = delay
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay)
        self.scheduler.add_job(
            self._run_cycle_job,
            DateTrigger(run_date=run_date),
            name=f'Hive farm {self.config.farm_id} collection cycle #{self.cycles + 1}'
        )

    def stop(self):
        """Stop the loop after the current cycle"""
        if self.state is SchedulerState.STOPPED:
            return

        self.state = SchedulerState.STOPPED
        self.publisher.publish(STATUS_TOPIC, f"Mining monitor stopped for farm {self.config.farm_id}")

        if self.scheduler.running:
            try:
                self.scheduler.shutdown(wait=False)
            except Exception as e:
                logger.error(f"Failed to stop monitor scheduler: {e}")
        logger.info("🛑 Monitor scheduler stopped")

    def get_status(self) -> dict:
        return {
            'state': self.state.value,
            'cycles': self.cycles,
            'failed_cycles': self.failed_cycles,
            'next_delay': self.next_delay,
        }
