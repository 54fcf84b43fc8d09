"""
Fitness evaluation pipeline for the shading optimizer.

Turns a parameter vector into a scored EvaluationResult by driving the
external collaborators:

    cache lookup -> isolated design write -> settle delay -> simulation
    script -> result parsing -> scoring and constraint check

Any failure along the way becomes a worst-case result; only cancellation
propagates to the optimizer.
"""

import asyncio
import logging
import math
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Any

from .constraints import parse_optional_constraint
from .data_models import EvaluationResult, Goal, Objective
from .errors import ConfigurationError, EvaluationError, OptimizationCancelled, CancellationToken
from .fitness_cache import FitnessCache, CacheEntry, make_cache_key

logger = logging.getLogger(__name__)

SCRIPT_PLACEHOLDERS = (
    "project_dir", "project_name", "run_id", "design_file",
    "recipe", "quality", "wall", "shading_type",
)


def default_max_concurrent() -> int:
    """One fewer worker than CPUs, never less than one."""
    return max(1, (os.cpu_count() or 1) - 1)


@dataclass
class EvaluationSettings:
    """
    Everything the pipeline needs to evaluate one design.

    Attributes:
        project_dir: Project root (scripts run here, results are read from here)
        script_template: Simulation script text; {placeholders} are filled per run
        project_name: Prefix of result file names
        recipe: Simulation recipe key
        goal_metric: Metric scored for single-objective runs
        goal: Direction of the goal metric
        target_value: Target for Goal.SET_TARGET
        unit: Display unit of the goal metric
        constraint: Optional constraint text such as "ASE < 10"
        objectives: Objectives whose worst values are reported on failure
        wall: Target wall orientation
        shading_type: Shading device being optimized
        quality: Simulation quality preset
        settle_delay: Seconds to wait after writing the design
        timeout: Seconds before a simulation is killed (None = no limit)
        max_concurrent: Simultaneous simulations (None = cpu_count - 1)
    """
    project_dir: str
    script_template: str
    project_name: str = "scene"
    recipe: str = "sda-ase"
    goal_metric: str = "sDA"
    goal: Goal = Goal.MAXIMIZE
    target_value: Optional[float] = None
    unit: str = ""
    constraint: Optional[str] = None
    objectives: List[Objective] = field(default_factory=list)
    wall: str = "s"
    shading_type: str = "overhang"
    quality: str = "draft"
    settle_delay: float = 0.3
    timeout: Optional[float] = 600.0
    max_concurrent: Optional[int] = None

    @property
    def goal_objective(self) -> Objective:
        return Objective(self.goal_metric, self.goal, self.target_value)


class FitnessEvaluator:
    """
    Cached, fault-tolerant evaluation of designs.

    Args:
        settings: Evaluation settings
        mutator: Object with async apply(params, run_id) -> design file path
        runner: Object with async execute(script, working_dir, timeout=...)
            returning a result with exit_code and stderr
        metrics_reader: async run_id -> metrics map, raising on missing or
            malformed results
        cache: Session cache (a new one is created if omitted)
        cancel_token: Shared stop flag

    Raises:
        ConfigurationError: If the script template or constraint is invalid

    Example:
        >>> evaluator = FitnessEvaluator(settings, mutator, runner, reader)
        >>> result = await evaluator.evaluate({'depth': 0.6})
        >>> result.fitness, result.metric_value
    """

    def __init__(
        self,
        settings: EvaluationSettings,
        mutator,
        runner,
        metrics_reader: Callable[[str], Awaitable[Dict[str, float]]],
        cache: Optional[FitnessCache] = None,
        cancel_token: Optional[CancellationToken] = None
    ):
        self.settings = settings
        self.mutator = mutator
        self.runner = runner
        self.metrics_reader = metrics_reader
        self.cache = cache if cache is not None else FitnessCache()
        self.cancel_token = cancel_token if cancel_token is not None else CancellationToken()
        self.constraint = parse_optional_constraint(settings.constraint)
        self._objective = settings.goal_objective

        self._check_template(settings.script_template)

        limit = settings.max_concurrent or default_max_concurrent()
        self._semaphore = asyncio.Semaphore(limit)
        self._in_flight: Dict[Any, asyncio.Future] = {}
        self._run_counter = 0

        self.evaluation_count = 0
        self.failure_count = 0

    @staticmethod
    def _check_template(template: str) -> None:
        if not template or not template.strip():
            raise ConfigurationError("A simulation script template is required")
        try:
            template.format_map({name: "" for name in SCRIPT_PLACEHOLDERS})
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid script template placeholder {e}. Available: {', '.join(SCRIPT_PLACEHOLDERS)}"
            )

    def _next_run_id(self) -> str:
        self._run_counter += 1
        return f"opt_{self._run_counter}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"

    def render_script(self, run_id: str, design_file: Any) -> str:
        """Fill the script template for one run."""
        s = self.settings
        return s.script_template.format_map({
            "project_dir": s.project_dir,
            "project_name": s.project_name,
            "run_id": run_id,
            "design_file": str(design_file),
            "recipe": s.recipe,
            "quality": s.quality,
            "wall": s.wall,
            "shading_type": s.shading_type,
        })

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _lookup_goal_value(self, metrics: Dict[str, float]) -> float:
        wanted = self.settings.goal_metric.lower()
        for name, value in metrics.items():
            if name.lower() == wanted:
                value = float(value)
                if math.isnan(value):
                    raise EvaluationError(f"Metric '{name}' is NaN")
                return value
        raise EvaluationError(
            f"Metric '{self.settings.goal_metric}' not found in results (got: {', '.join(metrics) or 'none'})"
        )

    def score(self, params: Dict[str, Any], metrics: Dict[str, float]) -> EvaluationResult:
        """
        Score parsed metrics.

        Args:
            params: Evaluated parameter vector
            metrics: Parsed metric map

        Returns:
            EvaluationResult; fitness is -inf when the constraint is violated

        Raises:
            EvaluationError: If the goal metric is missing or NaN
        """
        value = self._lookup_goal_value(metrics)
        fitness = self._objective.score(value)

        if self.constraint is not None and not self.constraint.check_metrics(metrics, value):
            logger.info("Constraint failed (%s) for %s", self.constraint, params)
            fitness = -math.inf

        return EvaluationResult(
            params=dict(params),
            fitness=fitness,
            metric_value=value,
            unit=self.settings.unit,
            metrics={name: float(v) for name, v in metrics.items()},
        )

    def failure_metrics(self) -> Dict[str, float]:
        """Worst-case values for every tracked objective."""
        metrics = {self._objective.id: self._objective.worst_value()}
        for objective in self.settings.objectives:
            metrics[objective.id] = objective.worst_value()
        return metrics

    def _failure(self, params: Dict[str, Any], error: Exception) -> EvaluationResult:
        self.failure_count += 1
        logger.warning("Evaluation failed for %s: %s", params, error)
        return EvaluationResult(
            params=dict(params),
            fitness=-math.inf,
            metric_value=0.0,
            unit="",
            metrics=self.failure_metrics(),
            failed=True,
            error=str(error),
        )

    def _from_entry(self, entry: CacheEntry) -> EvaluationResult:
        return EvaluationResult(
            params=dict(entry.params),
            fitness=entry.fitness,
            metric_value=entry.metric_value,
            unit=entry.unit,
            metrics=dict(entry.raw_metrics) if entry.raw_metrics is not None else self.failure_metrics(),
            failed=entry.failed,
            cached=True,
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _simulate(self, params: Dict[str, Any]) -> EvaluationResult:
        run_id = self._next_run_id()
        token = self.cancel_token

        try:
            token.raise_if_cancelled()
            design_file = await self.mutator.apply(params, run_id)

            await asyncio.sleep(self.settings.settle_delay)
            token.raise_if_cancelled()

            script = self.render_script(run_id, design_file)
            async with self._semaphore:
                token.raise_if_cancelled()
                outcome = await self.runner.execute(
                    script, self.settings.project_dir, timeout=self.settings.timeout
                )
            token.raise_if_cancelled()

            if outcome.exit_code != 0:
                raise EvaluationError(
                    f"Simulation run {run_id} failed with code {outcome.exit_code}: {outcome.stderr[-300:]}"
                )

            metrics = await self.metrics_reader(run_id)
            token.raise_if_cancelled()
            result = self.score(params, metrics)

        except OptimizationCancelled:
            raise
        except Exception as e:
            result = self._failure(params, e)

        self.evaluation_count += 1
        self.cache.put(params, CacheEntry(
            params=dict(params),
            fitness=result.fitness,
            metric_value=result.metric_value,
            unit=result.unit,
            raw_metrics=None if result.failed else dict(result.metrics),
            failed=result.failed,
        ))
        return result

    async def evaluate(self, params: Dict[str, Any]) -> EvaluationResult:
        """
        Evaluate one design, consulting the cache first.

        Identical vectors already being simulated share that simulation.

        Args:
            params: Parameter vector

        Returns:
            EvaluationResult (never raises on simulation failure)

        Raises:
            OptimizationCancelled: If the run was stopped
        """
        self.cancel_token.raise_if_cancelled()

        entry = self.cache.get(params)
        if entry is not None:
            return self._from_entry(entry)

        key = make_cache_key(params)
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._simulate(dict(params)))
            self._in_flight[key] = task
            task.add_done_callback(lambda _: self._in_flight.pop(key, None))

        return await asyncio.shield(task)

    async def evaluate_metrics(self, params: Dict[str, Any]) -> Dict[str, float]:
        """
        Metrics-map adapter for multi-objective runs.

        Failed and constraint-violating designs report worst-case metrics so
        they sink to the last front.
        """
        result = await self.evaluate(params)
        if result.failed or not result.is_valid:
            return self.failure_metrics()
        return dict(result.metrics)
