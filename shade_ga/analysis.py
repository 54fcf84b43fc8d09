"""
Post-hoc analysis of cached evaluations.

- suggest_range: effective sub-range of one swept parameter
- collect_result_dataset: every successfully parsed evaluation as flat records
- summarize_sensitivity: per-parameter correlation and linear trend for a metric
- optimization_summary: best design plus all evaluations
"""

import logging
import math
from dataclasses import dataclass, field
from numbers import Number
from typing import Dict, List, Optional, Any, Union

import numpy as np

from .data_models import Goal
from .fitness_cache import FitnessCache, CacheEntry

logger = logging.getLogger(__name__)

MIN_SAMPLES_FOR_TRIMMING = 5
# Fraction of the fitness range trimmed from the poor end of the sweep
WORST_TAIL_FRACTION = 0.15
# Points within this fraction of the range from the best count as a plateau
PLATEAU_FRACTION = 0.05


@dataclass
class RangeSuggestion:
    suggested_min: float
    suggested_max: float
    best_solution: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suggested_min": self.suggested_min,
            "suggested_max": self.suggested_max,
            "best_solution": dict(self.best_solution),
        }


@dataclass
class ResultDataset:
    records: List[Dict[str, Any]] = field(default_factory=list)
    parameter_names: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def _entries(source: Union[FitnessCache, List[Any]]) -> List[CacheEntry]:
    """Cache entries from a cache or from exported records (corrupt ones skipped)."""
    if isinstance(source, FitnessCache):
        return source.entries()

    entries = []
    for index, record in enumerate(source or []):
        if isinstance(record, CacheEntry):
            entries.append(record)
            continue
        try:
            entries.append(CacheEntry.from_dict(record))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Skipping corrupt cache record %d: %s", index, e)
    return entries


def suggest_range(
    source: Union[FitnessCache, List[Any]],
    parameter_name: str,
    goal: Goal = Goal.MAXIMIZE
) -> Optional[RangeSuggestion]:
    """
    Suggest an effective sub-range for one parameter from a sweep.

    Samples are (value, fitness) pairs for every cached evaluation that has
    the parameter, sorted by value. Failed designs (non-finite fitness) and
    non-numeric values are ignored.

    - Fewer than 5 samples: the observed min/max is returned verbatim.
    - All fitness values equal: the full observed range is returned.
    - Otherwise the minimum is the first value whose fitness clears the worst
      15% of the fitness range, and the maximum is the lowest value of the
      high-end plateau whose fitness stays within 5% of the best. Samples
      above the plateau that fall below it (a peak followed by a decline)
      are trimmed as well.

    Cached fitness is already oriented so that higher is better (minimize
    and set-target scores are negated), so cache-backed calls should keep
    the default goal. Pass Goal.MINIMIZE only for records whose fitness
    holds raw, unsigned metric values where lower is better.

    Args:
        source: FitnessCache or exported cache records
        parameter_name: Parameter that was swept
        goal: Direction of the fitness values in source (default: higher is better)

    Returns:
        RangeSuggestion, or None if there are no usable samples

    Example:
        >>> suggestion = suggest_range(cache, 'depth')
        >>> suggestion.suggested_min, suggestion.suggested_max
        (0.4, 1.1)
    """
    samples = []
    for entry in _entries(source):
        value = entry.params.get(parameter_name)
        if not _is_number(value) or not math.isfinite(entry.fitness):
            continue
        samples.append((float(value), entry.fitness, entry.metric_value, entry.unit))

    if not samples:
        return None

    samples.sort(key=lambda sample: sample[0])
    values = [s[0] for s in samples]
    fitnesses = [s[1] for s in samples]

    maximize = goal != Goal.MINIMIZE
    best_index = int(np.argmax(fitnesses)) if maximize else int(np.argmin(fitnesses))
    best_value, best_fitness, best_metric, best_unit = samples[best_index]
    best_solution = {
        parameter_name: best_value,
        "fitness": best_fitness,
        "metric_value": best_metric,
        "unit": best_unit,
    }

    if len(samples) < MIN_SAMPLES_FOR_TRIMMING:
        return RangeSuggestion(min(values), max(values), best_solution)

    worst_fitness = min(fitnesses) if maximize else max(fitnesses)
    fitness_range = abs(best_fitness - worst_fitness)
    if fitness_range == 0:
        return RangeSuggestion(values[0], values[-1], best_solution)

    if maximize:
        min_threshold = worst_fitness + WORST_TAIL_FRACTION * fitness_range
        plateau_threshold = best_fitness - PLATEAU_FRACTION * fitness_range
        clears_tail = lambda f: f >= min_threshold
        on_plateau = lambda f: f >= plateau_threshold
    else:
        min_threshold = worst_fitness - WORST_TAIL_FRACTION * fitness_range
        plateau_threshold = best_fitness + PLATEAU_FRACTION * fitness_range
        clears_tail = lambda f: f <= min_threshold
        on_plateau = lambda f: f <= plateau_threshold

    suggested_min = next(value for value, f in zip(values, fitnesses) if clears_tail(f))

    suggested_max = None
    for value, f in zip(reversed(values), reversed(fitnesses)):
        if on_plateau(f):
            suggested_max = value
        elif suggested_max is not None:
            break

    if suggested_min > suggested_max:
        suggested_min, suggested_max = suggested_max, suggested_min

    return RangeSuggestion(suggested_min, suggested_max, best_solution)


def collect_result_dataset(source: Union[FitnessCache, List[Any]]) -> ResultDataset:
    """
    Flatten every evaluation with parsed metrics into a dataset.

    Args:
        source: FitnessCache or exported cache records

    Returns:
        ResultDataset with {params, raw_metrics} records and the sorted union
        of parameter names
    """
    dataset = ResultDataset()
    names = set()

    for entry in _entries(source):
        if entry.raw_metrics is None:
            continue
        dataset.records.append({"params": dict(entry.params), "raw_metrics": dict(entry.raw_metrics)})
        names.update(entry.params)

    dataset.parameter_names = sorted(names)
    return dataset


def summarize_sensitivity(dataset: ResultDataset, metric_id: str) -> Dict[str, Dict[str, Any]]:
    """
    Per-parameter trend of one metric across the dataset.

    Args:
        dataset: Output of collect_result_dataset
        metric_id: Metric to explain

    Returns:
        Dict mapping parameter name -> {'samples', 'correlation', 'slope'};
        correlation and slope are None when the parameter or metric never varies
    """
    summary = {}

    for name in dataset.parameter_names:
        xs, ys = [], []
        for record in dataset.records:
            x = record["params"].get(name)
            y = record["raw_metrics"].get(metric_id)
            if _is_number(x) and _is_number(y) and math.isfinite(y):
                xs.append(float(x))
                ys.append(float(y))

        if len(xs) < 2:
            continue

        x_arr = np.asarray(xs)
        y_arr = np.asarray(ys)
        correlation = None
        slope = None
        if np.ptp(x_arr) > 0 and np.ptp(y_arr) > 0:
            correlation = float(np.corrcoef(x_arr, y_arr)[0, 1])
        if np.ptp(x_arr) > 0:
            slope = float(np.polyfit(x_arr, y_arr, 1)[0])

        summary[name] = {"samples": len(xs), "correlation": correlation, "slope": slope}

    return summary


def optimization_summary(source: Union[FitnessCache, List[Any]]) -> Dict[str, Any]:
    """
    Compact summary of a run for reports.

    Returns:
        Dict with 'best' (None if no valid design), 'evaluations_count' and
        'evaluations' (params, fitness, metric_value, unit, failed)
    """
    evaluations = []
    best = None

    for entry in _entries(source):
        item = {
            "params": dict(entry.params),
            "fitness": entry.fitness,
            "metric_value": entry.metric_value,
            "unit": entry.unit,
            "failed": entry.failed,
        }
        evaluations.append(item)
        if math.isfinite(entry.fitness) and (best is None or entry.fitness > best["fitness"]):
            best = item

    return {"best": best, "evaluations_count": len(evaluations), "evaluations": evaluations}
