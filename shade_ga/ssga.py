"""
Steady-state single-objective genetic optimizer.

Each step selects two parents by tournament, breeds two children, evaluates
them concurrently and culls the merged population back to its fixed size.
"""

import asyncio
import copy
import inspect
import logging
import math
from numbers import Number
from typing import Callable, Dict, List, Optional, Any, Union

import numpy as np

from .constraints import Constraint, parse_optional_constraint
from .crossover import crossover
from .data_models import Individual, Objective, Goal, ParameterSpace, EvaluationResult
from .errors import ConfigurationError, OptimizationCancelled, CancellationToken
from .mutation import mutate
from .nsga2 import OptimizerStatus
from .step_utils import initialize_random

logger = logging.getLogger(__name__)

TOURNAMENT_SIZE = 3


class SSGAOptimizer:
    """
    Single-objective search over a fixed parameter space.

    Args:
        space: Parameters being optimized
        objective: Goal applied to the fitness function's raw value
        population_size: Individuals kept between steps
        max_evaluations: Total evaluation budget (including the initial population)
        mutation_rate: Per-parameter mutation probability
        constraint: Optional inequality (Constraint or text like "ASE < 10");
            violating designs get -inf fitness
        rng: Random number generator (default: unseeded)
        cancel_token: Shared stop flag (default: a private token)

    Raises:
        ConfigurationError: If settings or the constraint are invalid
    """

    def __init__(
        self,
        space: ParameterSpace,
        objective: Optional[Objective] = None,
        population_size: int = 10,
        max_evaluations: int = 100,
        mutation_rate: float = 0.1,
        constraint: Optional[Union[Constraint, str]] = None,
        rng: Optional[np.random.Generator] = None,
        cancel_token: Optional[CancellationToken] = None
    ):
        if population_size < 2:
            raise ConfigurationError(f"population_size must be >= 2, got {population_size}")
        if max_evaluations < population_size:
            raise ConfigurationError(
                f"max_evaluations ({max_evaluations}) must be >= population_size ({population_size})"
            )
        if not 0.0 <= mutation_rate <= 1.0:
            raise ConfigurationError(f"mutation_rate must be in [0, 1], got {mutation_rate}")

        self.space = space
        self.objective = objective if objective is not None else Objective("fitness", Goal.MAXIMIZE)
        self.population_size = population_size
        self.max_evaluations = max_evaluations
        self.mutation_rate = mutation_rate
        if isinstance(constraint, Constraint) or constraint is None:
            self.constraint = constraint
        else:
            self.constraint = parse_optional_constraint(constraint)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.cancel_token = cancel_token if cancel_token is not None else CancellationToken()

        self.evaluations_completed = 0
        self.population: List[Individual] = []
        self.best_design: Optional[Individual] = None
        self.status = OptimizerStatus.UNINITIALIZED

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _score_individual(self, params: Dict[str, Any], result: Any) -> Individual:
        """Normalize whatever the fitness function returned into an Individual."""
        individual = Individual(params=params)

        if result is None:
            individual.failed = True
        elif isinstance(result, EvaluationResult):
            individual.fitness = result.fitness
            individual.metric_value = result.metric_value
            individual.unit = result.unit
            individual.metrics = dict(result.metrics)
            individual.failed = result.failed
        elif isinstance(result, Number):
            individual.metric_value = float(result)
            individual.fitness = self.objective.score(float(result))
            individual.metrics = {self.objective.id: float(result)}
        else:
            metrics = {name: float(value) for name, value in dict(result).items()}
            individual.metrics = metrics
            if self.objective.id in metrics:
                individual.metric_value = metrics[self.objective.id]
                individual.fitness = self.objective.score(individual.metric_value)
            else:
                logger.warning("Metric '%s' missing from result for %s", self.objective.id, params)
                individual.failed = True

        if individual.failed or individual.fitness is None or math.isnan(individual.fitness):
            individual.fitness = -math.inf
            if individual.metric_value is None:
                individual.metric_value = 0.0
        elif self.constraint is not None:
            if not self.constraint.check_metrics(individual.metrics or {}, individual.metric_value):
                individual.fitness = -math.inf

        return individual

    async def _evaluate(self, params: Dict[str, Any], fitness_fn: Callable) -> Individual:
        try:
            result = fitness_fn(params)
            if inspect.isawaitable(result):
                result = await result
            individual = self._score_individual(params, result)
        except OptimizationCancelled:
            raise
        except Exception as e:
            logger.warning("Evaluation failed for %s: %s", params, e)
            individual = self._score_individual(params, None)

        self._update_best(individual)
        return individual

    async def _evaluate_batch(self, batch: List[Dict[str, Any]], fitness_fn: Callable) -> List[Individual]:
        return list(await asyncio.gather(*(self._evaluate(params, fitness_fn) for params in batch)))

    def _update_best(self, individual: Individual) -> None:
        if not math.isfinite(individual.fitness):
            return
        if self.best_design is None or individual.fitness > self.best_design.fitness:
            self.best_design = individual.copy()

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_parent(self) -> Individual:
        """Size-3 tournament on fitness."""
        best = None
        for _ in range(TOURNAMENT_SIZE):
            candidate = self.population[int(self.rng.integers(len(self.population)))]
            if best is None or candidate.fitness > best.fitness:
                best = candidate
        return best

    def insert_and_cull(self, children: List[Individual]) -> None:
        """Merge children into the population, keep the fittest population_size."""
        combined = self.population + children
        combined.sort(key=lambda ind: ind.fitness, reverse=True)
        self.population = combined[:self.population_size]

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def _report(self, progress_callback: Optional[Callable]) -> None:
        if progress_callback is None:
            return
        outcome = progress_callback(self.evaluations_completed, self.best_design)
        if inspect.isawaitable(outcome):
            await outcome

    async def run(self, fitness_fn: Callable, progress_callback: Optional[Callable] = None) -> Optional[Individual]:
        """
        Run (or resume) the optimization.

        Args:
            fitness_fn: params -> number, metrics map or EvaluationResult
                (sync or async); any exception it raises marks a failure
            progress_callback: Optional (evaluations_completed, best_design)
                -> None, sync or async

        Returns:
            Best valid individual, or None if every design was invalid

        Raises:
            OptimizationCancelled: If stop() was called
        """
        self.cancel_token.reset()
        try:
            if not self.population:
                self.status = OptimizerStatus.INITIALIZING
                self.cancel_token.raise_if_cancelled()
                batch = [initialize_random(self.space, self.rng) for _ in range(self.population_size)]
                self.population = await self._evaluate_batch(batch, fitness_fn)
                self.population.sort(key=lambda ind: ind.fitness, reverse=True)
                self.evaluations_completed = len(batch)
                await self._report(progress_callback)

            self.status = OptimizerStatus.RUNNING

            while self.evaluations_completed < self.max_evaluations:
                self.cancel_token.raise_if_cancelled()

                parent_a = self.select_parent()
                parent_b = self.select_parent()
                batch = [
                    mutate(crossover(parent_a.params, parent_b.params, self.space, self.rng),
                           self.space, self.mutation_rate, self.rng),
                    mutate(crossover(parent_b.params, parent_a.params, self.space, self.rng),
                           self.space, self.mutation_rate, self.rng),
                ]
                batch = batch[:self.max_evaluations - self.evaluations_completed]

                children = await self._evaluate_batch(batch, fitness_fn)
                self.evaluations_completed += len(children)
                self.insert_and_cull(children)

                await self._report(progress_callback)

        except (OptimizationCancelled, asyncio.CancelledError):
            self.status = OptimizerStatus.CANCELLED
            raise

        self.status = OptimizerStatus.COMPLETED
        if self.best_design is None:
            logger.warning("No valid design found in %d evaluations", self.evaluations_completed)
        return self.best_design

    def stop(self) -> None:
        """Request cooperative cancellation."""
        self.cancel_token.cancel()

    # ------------------------------------------------------------------
    # Checkpointing
    # ------------------------------------------------------------------

    def get_state(self) -> Dict[str, Any]:
        return copy.deepcopy({
            "evaluations_completed": self.evaluations_completed,
            "population": [ind.to_dict() for ind in self.population],
            "best_design": self.best_design.to_dict() if self.best_design is not None else None,
        })

    def load_state(self, state: Dict[str, Any]) -> None:
        state = copy.deepcopy(state)
        self.evaluations_completed = int(state.get("evaluations_completed", 0))
        self.population = [Individual.from_dict(item) for item in state.get("population", [])]
        for individual in self.population:
            if individual.fitness is None:
                individual.fitness = -math.inf
        best = state.get("best_design")
        self.best_design = Individual.from_dict(best) if best is not None else None
        self.status = OptimizerStatus.UNINITIALIZED
