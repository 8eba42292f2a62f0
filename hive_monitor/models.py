"""
Telemetry data models
遥测数据模型
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .extractors import cpu_temperature_candidates, hashrate_candidates, parse_number


def _int_or_none(value: Any) -> Optional[int]:
    number = parse_number(value)
    return int(number) if number is not None else None


@dataclass(frozen=True)
class WorkerSummary:
    """One worker row of the farm listing"""
    id: str
    name: str
    online: bool

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "WorkerSummary":
        stats = record.get("stats") or {}
        worker_id = record.get("id")
        return cls(
            id=str(worker_id),
            name=str(record.get("name") or f"worker-{worker_id}"),
            online=bool(stats.get("online", False)),
        )


@dataclass(frozen=True)
class FarmSnapshot:
    workers: Tuple[WorkerSummary, ...] = ()

    @property
    def total_count(self) -> int:
        return len(self.workers)

    @property
    def online_count(self) -> int:
        return sum(1 for w in self.workers if w.online)

    @property
    def offline_count(self) -> int:
        return self.total_count - self.online_count

    def __bool__(self) -> bool:
        return bool(self.workers)


@dataclass
class WorkerDetail:
    """
    Full worker record plus the fields the aggregator publishes

    ``record`` keeps the raw JSON so extractors can scan it.
    """
    record: Dict[str, Any]
    flight_sheet_name: Optional[str] = None
    hashrate_candidates: List[float] = field(default_factory=list)
    boot_time: Optional[int] = None
    cpu_temp_candidates: List[float] = field(default_factory=list)
    power_draw: Optional[float] = None
    last_seen: Optional[int] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "WorkerDetail":
        stats = record.get("stats") or {}
        flight_sheet = record.get("flight_sheet") or {}
        name = flight_sheet.get("name") if isinstance(flight_sheet, dict) else None
        return cls(
            record=record,
            flight_sheet_name=name or None,
            hashrate_candidates=hashrate_candidates(record),
            boot_time=_int_or_none(stats.get("boot_time")),
            cpu_temp_candidates=cpu_temperature_candidates(record),
            power_draw=parse_number(stats.get("power_draw")),
            last_seen=_int_or_none(stats.get("stats_time")),
        )


@dataclass
class CycleTotals:
    """Farm-wide accumulators for a single cycle"""
    total_hashrate: float = 0.0
    uptime_sum: int = 0
    online_count_with_uptime: int = 0
    cpu_temp_sum: float = 0.0
    cpu_temp_count: int = 0

    @property
    def average_uptime(self) -> Optional[int]:
        if self.online_count_with_uptime <= 0:
            return None
        return int(self.uptime_sum / self.online_count_with_uptime)

    @property
    def average_cpu_temp(self) -> Optional[float]:
        if self.cpu_temp_count <= 0:
            return None
        return self.cpu_temp_sum / self.cpu_temp_count


@dataclass
class CycleResult:
    publications: List[Tuple[str, str]] = field(default_factory=list)
    totals: CycleTotals = field(default_factory=CycleTotals)
    ok: bool = True
    error: Optional[str] = None
