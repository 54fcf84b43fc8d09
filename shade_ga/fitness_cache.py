"""
Fitness cache for the shading optimizer.

Memoizes evaluation results by a canonical, order-independent parameter key.
Entries live for the whole optimization session and are later consumed by
the analysis routines.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Tuple, Optional, Any, Iterator

logger = logging.getLogger(__name__)

CacheKey = Tuple[Tuple[str, Any], ...]


def _normalize_value(value: Any) -> Any:
    """Collapse float noise so equal grid values share a key."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        value = float(value)
        if math.isfinite(value):
            value = round(value, 9)
            return 0.0 if value == 0 else value
    return value


def make_cache_key(params: Dict[str, Any]) -> CacheKey:
    """
    Build the canonical key for a parameter vector.

    Args:
        params: Parameter name -> value

    Returns:
        Tuple of (name, normalized value) pairs sorted by name

    Example:
        >>> make_cache_key({'b': 0.30000000000000004, 'a': 1}) == make_cache_key({'a': 1.0, 'b': 0.3})
        True
    """
    return tuple(sorted((str(name), _normalize_value(value)) for name, value in params.items()))


@dataclass
class CacheEntry:
    """
    One memoized evaluation.

    Attributes:
        params: Parameter vector as evaluated
        fitness: Signed score (-inf for failed or invalid designs)
        metric_value: Raw goal-metric value
        unit: Unit of the goal metric
        raw_metrics: All parsed metrics (None if parsing never succeeded)
        failed: True if the evaluation failed
    """
    params: Dict[str, Any]
    fitness: float
    metric_value: float = 0.0
    unit: str = ""
    raw_metrics: Optional[Dict[str, float]] = None
    failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "params": dict(self.params),
            "fitness": self.fitness,
            "metric_value": self.metric_value,
            "unit": self.unit,
            "raw_metrics": dict(self.raw_metrics) if self.raw_metrics is not None else None,
            "failed": self.failed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        raw = data.get("raw_metrics")
        return cls(
            params=dict(data["params"]),
            fitness=float(data["fitness"]),
            metric_value=float(data.get("metric_value", 0.0)),
            unit=str(data.get("unit", "")),
            raw_metrics={k: float(v) for k, v in raw.items()} if raw is not None else None,
            failed=bool(data.get("failed", False)),
        )


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0


class FitnessCache:
    """
    Session-wide map from canonical parameter key to CacheEntry.

    Example:
        >>> cache = FitnessCache()
        >>> cache.put({'depth': 0.5}, CacheEntry(params={'depth': 0.5}, fitness=42.0))
        >>> cache.get({'depth': 0.5}).fitness
        42.0
    """

    def __init__(self):
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self.stats = CacheStats()

    def get(self, params: Dict[str, Any]) -> Optional[CacheEntry]:
        """
        Look up a parameter vector, counting hits and misses.

        Args:
            params: Parameter vector

        Returns:
            CacheEntry or None
        """
        entry = self._entries.get(make_cache_key(params))
        if entry is None:
            self.stats.misses += 1
        else:
            self.stats.hits += 1
            logger.debug("Cache hit for %s", params)
        return entry

    def put(self, params: Dict[str, Any], entry: CacheEntry) -> None:
        self._entries[make_cache_key(params)] = entry

    def __contains__(self, params: Dict[str, Any]) -> bool:
        return make_cache_key(params) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CacheEntry]:
        return iter(list(self._entries.values()))

    def items(self) -> List[Tuple[CacheKey, CacheEntry]]:
        return list(self._entries.items())

    def entries(self) -> List[CacheEntry]:
        return list(self._entries.values())

    def clear(self) -> None:
        self._entries.clear()
        self.stats = CacheStats()

    def to_records(self) -> List[Dict[str, Any]]:
        """
        Export all entries as plain dictionaries (insertion order).

        Returns:
            List of record dicts suitable for YAML serialization
        """
        return [entry.to_dict() for entry in self._entries.values()]

    @classmethod
    def from_records(cls, records: List[Any]) -> "FitnessCache":
        """
        Rebuild a cache from exported records.

        Malformed records are skipped with a warning.

        Args:
            records: Output of to_records() (possibly loaded from disk)

        Returns:
            New FitnessCache
        """
        cache = cls()
        skipped = 0

        for index, record in enumerate(records or []):
            try:
                entry = CacheEntry.from_dict(record)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping corrupt cache record %d: %s", index, e)
                skipped += 1
                continue
            cache.put(entry.params, entry)

        if skipped:
            logger.warning("Skipped %d corrupt cache record(s)", skipped)

        return cache
