"""
Data models for the shading optimizer.

Core data structures representing tunable parameters, objectives,
individuals and evaluation results.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Any, Union, Iterator

from .errors import ConfigurationError


class Goal(str, Enum):
    """Direction of an objective."""
    MAXIMIZE = "maximize"
    MINIMIZE = "minimize"
    SET_TARGET = "set-target"


@dataclass(frozen=True)
class ContinuousParameter:
    """
    A real-valued design variable sampled on a step grid.

    Attributes:
        name: Parameter identifier (e.g. "depth")
        min: Lower bound (inclusive)
        max: Upper bound (inclusive)
        step: Grid increment; 0 means no snapping (clamp only)
    """
    name: str
    min: float
    max: float
    step: float = 0.0

    def __post_init__(self):
        """Validate bounds."""
        if self.min > self.max:
            raise ConfigurationError(
                f"Parameter '{self.name}': min ({self.min}) must not exceed max ({self.max})"
            )
        if self.step < 0:
            raise ConfigurationError(f"Parameter '{self.name}': step must be >= 0, got {self.step}")

    @property
    def span(self) -> float:
        return self.max - self.min

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": "continuous",
                "min": self.min, "max": self.max, "step": self.step}


@dataclass(frozen=True)
class DiscreteParameter:
    """
    A design variable chosen from an ordered option set.

    Attributes:
        name: Parameter identifier (e.g. "placement")
        options: Allowed values, in display order
    """
    name: str
    options: tuple

    def __post_init__(self):
        """Normalize options to a tuple and validate."""
        if not isinstance(self.options, tuple):
            object.__setattr__(self, "options", tuple(self.options))
        if not self.options:
            raise ConfigurationError(f"Parameter '{self.name}': options must not be empty")

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": "discrete", "options": list(self.options)}


ParameterConstraint = Union[ContinuousParameter, DiscreteParameter]


def parameter_from_dict(data: dict[str, Any]) -> ParameterConstraint:
    """
    Build a parameter constraint from its dictionary form.

    Args:
        data: Dictionary with 'name', 'type' and either min/max/step or options

    Returns:
        ContinuousParameter or DiscreteParameter

    Raises:
        ConfigurationError: If the type is unknown or fields are missing
    """
    kind = data.get("type", "continuous")
    name = data.get("name") or data.get("id")
    if not name:
        raise ConfigurationError(f"Parameter definition is missing a name: {data}")

    if kind == "continuous":
        try:
            return ContinuousParameter(
                name=name,
                min=float(data["min"]),
                max=float(data["max"]),
                step=float(data.get("step", 0.0)),
            )
        except KeyError as e:
            raise ConfigurationError(f"Parameter '{name}' is missing field {e}")
    if kind == "discrete":
        return DiscreteParameter(name=name, options=tuple(data.get("options") or ()))

    raise ConfigurationError(f"Parameter '{name}' has unknown type: {kind}")


class ParameterSpace:
    """
    Ordered collection of the parameters being optimized.

    The space is fixed for the lifetime of a run.
    """

    def __init__(self, constraints: list[ParameterConstraint]):
        if not constraints:
            raise ConfigurationError("Parameter space must contain at least one parameter")

        names = [c.name for c in constraints]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate parameter names: {', '.join(duplicates)}")

        self._constraints = tuple(constraints)
        self._by_name = {c.name: c for c in constraints}

    @property
    def constraints(self) -> tuple:
        return self._constraints

    @property
    def names(self) -> list[str]:
        return [c.name for c in self._constraints]

    def get(self, name: str) -> Optional[ParameterConstraint]:
        return self._by_name.get(name)

    def __iter__(self) -> Iterator[ParameterConstraint]:
        return iter(self._constraints)

    def __len__(self) -> int:
        return len(self._constraints)

    def to_list(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self._constraints]

    @classmethod
    def from_list(cls, items: list[dict[str, Any]]) -> "ParameterSpace":
        return cls([parameter_from_dict(item) for item in items])


@dataclass(frozen=True)
class Objective:
    """
    One quantity being optimized.

    Attributes:
        id: Metric identifier in the metrics map (e.g. "sDA")
        goal: Maximize, minimize, or hit a target value
        target: Target value (only for Goal.SET_TARGET)
    """
    id: str
    goal: Goal = Goal.MAXIMIZE
    target: Optional[float] = None

    def __post_init__(self):
        if not isinstance(self.goal, Goal):
            try:
                object.__setattr__(self, "goal", Goal(self.goal))
            except ValueError:
                raise ConfigurationError(f"Objective '{self.id}' has unknown goal: {self.goal}")
        if self.goal == Goal.SET_TARGET and self.target is None:
            raise ConfigurationError(f"Objective '{self.id}' uses set-target but has no target value")

    def score(self, value: float) -> float:
        """
        Convert a raw metric value into a signed score (higher is better).

        Args:
            value: Raw metric value

        Returns:
            value for maximize, -value for minimize, -|value - target| for set-target
        """
        if self.goal == Goal.MAXIMIZE:
            return value
        if self.goal == Goal.MINIMIZE:
            return -value
        return -abs(value - self.target)

    def worst_value(self) -> float:
        """Worst possible raw value for this objective's direction."""
        if self.goal == Goal.MINIMIZE:
            return math.inf
        if self.goal == Goal.SET_TARGET:
            return math.nan
        return -math.inf

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Objective":
        target = data.get("target")
        return cls(
            id=data["id"],
            goal=data.get("goal", Goal.MAXIMIZE),
            target=float(target) if target is not None else None,
        )


@dataclass
class Individual:
    """
    One candidate design in a population.

    Attributes:
        params: Parameter name -> value
        metrics: Metric id -> value (None until evaluated)
        rank: Non-domination rank, 1 = Pareto front (NSGA-II only)
        crowding_distance: Diversity measure within its front (NSGA-II only)
        fitness: Signed scalar score (SSGA only)
        metric_value: Raw value of the primary metric (SSGA only)
        unit: Unit string of the primary metric
        failed: True if evaluation failed and worst-case values were assigned
        domination_count: Transient counter used during sorting
        dominated_set: Transient list of individuals this one dominates
    """
    params: dict[str, Any]
    metrics: Optional[dict[str, float]] = None
    rank: int = 0
    crowding_distance: float = 0.0
    fitness: Optional[float] = None
    metric_value: Optional[float] = None
    unit: str = ""
    failed: bool = False
    domination_count: int = field(default=0, repr=False, compare=False)
    dominated_set: list = field(default_factory=list, repr=False, compare=False)

    @property
    def is_evaluated(self) -> bool:
        return self.metrics is not None or self.fitness is not None

    def copy(self) -> "Individual":
        """
        Create a deep copy of this individual (transient sort state excluded).

        Returns:
            New Individual with copied params and metrics
        """
        return Individual(
            params=dict(self.params),
            metrics=dict(self.metrics) if self.metrics is not None else None,
            rank=self.rank,
            crowding_distance=self.crowding_distance,
            fitness=self.fitness,
            metric_value=self.metric_value,
            unit=self.unit,
            failed=self.failed,
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to a plain dictionary for checkpoints.

        Returns:
            Dictionary containing only builtin types
        """
        return {
            "params": dict(self.params),
            "metrics": dict(self.metrics) if self.metrics is not None else None,
            "rank": self.rank,
            "crowding_distance": self.crowding_distance,
            "fitness": self.fitness,
            "metric_value": self.metric_value,
            "unit": self.unit,
            "failed": self.failed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Individual":
        metrics = data.get("metrics")
        return cls(
            params=dict(data["params"]),
            metrics=dict(metrics) if metrics is not None else None,
            rank=int(data.get("rank", 0)),
            crowding_distance=float(data.get("crowding_distance", 0.0)),
            fitness=data.get("fitness"),
            metric_value=data.get("metric_value"),
            unit=data.get("unit", ""),
            failed=bool(data.get("failed", False)),
        )


@dataclass
class EvaluationResult:
    """
    Outcome of evaluating one design through the simulation pipeline.

    Attributes:
        params: Parameter vector that was evaluated
        fitness: Signed score (-inf for failed or constraint-violating designs)
        metric_value: Raw value of the goal metric (0 on failure)
        unit: Unit of the goal metric
        metrics: All parsed metrics (worst-case objective values on failure)
        failed: True if the simulation or parsing failed
        error: Failure message, if any
        cached: True if served from the fitness cache
    """
    params: dict[str, Any]
    fitness: float
    metric_value: float = 0.0
    unit: str = ""
    metrics: dict[str, float] = field(default_factory=dict)
    failed: bool = False
    error: Optional[str] = None
    cached: bool = False

    @property
    def is_valid(self) -> bool:
        return math.isfinite(self.fitness)
