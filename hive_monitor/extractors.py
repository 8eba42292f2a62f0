"""
Metric Extractors
矿机指标提取

Worker records from the HiveOS API differ by miner software, so hashrate is
found by scanning the whole parsed record for ``hash`` keys, while CPU
temperature is read from an ordered list of known locations.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Tuple

HASH_KEY = "hash"

# Tried in order; first non-empty list wins
CPU_TEMPERATURE_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("hardware_stats", "cputemp"),
    ("stats", "cputemp"),
)


def _record_of(detail) -> Any:
    return getattr(detail, "record", detail)


def parse_number(value: Any) -> Optional[float]:
    """Coerce int, float or decimal string to float; None otherwise"""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
        if not number.is_finite():
            return None
        return float(number)
    return None


def iter_keyed_values(tree: Any, key: str) -> Iterator[Any]:
    """
    Yield every value stored under ``key`` (case-insensitive) anywhere in a
    parsed JSON tree, depth-first in document order.
    """
    wanted = key.lower()
    if isinstance(tree, Mapping):
        for k, v in tree.items():
            if isinstance(k, str) and k.lower() == wanted:
                yield v
            yield from iter_keyed_values(v, key)
    elif isinstance(tree, (list, tuple)):
        for item in tree:
            yield from iter_keyed_values(item, key)


def hashrate_candidates(record: Any) -> List[float]:
    """Numeric values found under ``hash`` keys, in document order"""
    candidates = []
    for value in iter_keyed_values(record, HASH_KEY):
        number = parse_number(value)
        if number is not None:
            candidates.append(number)
    return candidates


def _lookup(record: Any, path: Sequence[str]) -> Any:
    node = record
    for part in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(part)
    return node


def cpu_temperature_candidates(record: Any) -> List[float]:
    """First element of each known temperature list, in priority order"""
    candidates = []
    for path in CPU_TEMPERATURE_PATHS:
        readings = _lookup(record, path)
        if isinstance(readings, (list, tuple)) and readings:
            number = parse_number(readings[0])
            if number is not None:
                candidates.append(number)
    return candidates


def extract_hashrate(detail) -> float:
    """
    First strictly positive ``hash`` value in the record

    Returns:
        Hashrate as reported by HiveOS, or 0.0 if none found
    """
    for number in hashrate_candidates(_record_of(detail)):
        if number > 0:
            return number
    return 0.0


def extract_cpu_temperature(detail) -> Optional[float]:
    candidates = cpu_temperature_candidates(_record_of(detail))
    return candidates[0] if candidates else None


def format_uptime(seconds: int) -> str:
    """
    Human readable uptime

    0 -> "Unknown", 3600 -> "1h", 90000 -> "1d 1h", 90061 -> "1d 1h 1m".
    Zero-valued components are omitted; under a minute reads "0m".
    """
    seconds = int(seconds)
    if seconds <= 0:
        return "Unknown"

    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    return " ".join(parts) if parts else "0m"
