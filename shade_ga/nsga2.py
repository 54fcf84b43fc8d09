"""
NSGA-II multi-objective optimizer.

Maintains a population scored on two or more objectives and evolves it with
fast non-dominated sorting, crowding-distance diversity preservation and
generational (mu + lambda) survivor selection.
"""

import asyncio
import copy
import inspect
import logging
import math
from enum import Enum
from typing import Callable, Dict, List, Optional, Any

import numpy as np

from .crossover import crossover
from .data_models import Individual, Objective, Goal, ParameterSpace, EvaluationResult
from .errors import ConfigurationError, OptimizationCancelled, CancellationToken
from .mutation import mutate
from .step_utils import initialize_random

logger = logging.getLogger(__name__)


class OptimizerStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class NSGA2Optimizer:
    """
    Pareto search over a fixed parameter space.

    Args:
        space: Parameters being optimized
        objectives: Two or more maximize/minimize objectives
        population_size: Individuals per generation (N)
        max_generations: Number of generations to run
        mutation_rate: Per-parameter mutation probability
        rng: Random number generator (default: unseeded)
        cancel_token: Shared stop flag (default: a private token)

    Raises:
        ConfigurationError: If objectives or GA settings are invalid

    Example:
        >>> optimizer = NSGA2Optimizer(space, [Objective('sDA', 'maximize'), Objective('ASE', 'minimize')])
        >>> front = await optimizer.run(evaluator.evaluate_metrics)
    """

    def __init__(
        self,
        space: ParameterSpace,
        objectives: List[Objective],
        population_size: int = 20,
        max_generations: int = 20,
        mutation_rate: float = 0.1,
        rng: Optional[np.random.Generator] = None,
        cancel_token: Optional[CancellationToken] = None
    ):
        if len(objectives) < 2:
            raise ConfigurationError(
                f"NSGA-II needs at least 2 objectives, got {len(objectives)}"
            )
        for objective in objectives:
            if objective.goal not in (Goal.MAXIMIZE, Goal.MINIMIZE):
                raise ConfigurationError(
                    f"NSGA-II objective '{objective.id}' must be maximize or minimize, got {objective.goal.value}"
                )
        if population_size < 2:
            raise ConfigurationError(f"population_size must be >= 2, got {population_size}")
        if max_generations < 0:
            raise ConfigurationError(f"max_generations must be >= 0, got {max_generations}")
        if not 0.0 <= mutation_rate <= 1.0:
            raise ConfigurationError(f"mutation_rate must be in [0, 1], got {mutation_rate}")

        self.space = space
        self.objectives = list(objectives)
        self.population_size = population_size
        self.max_generations = max_generations
        self.mutation_rate = mutation_rate
        self.rng = rng if rng is not None else np.random.default_rng()
        self.cancel_token = cancel_token if cancel_token is not None else CancellationToken()

        self.current_generation = 0
        self.population: List[Individual] = []
        self.pareto_front: List[Individual] = []
        self.status = OptimizerStatus.UNINITIALIZED

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def _oriented_value(self, individual: Individual, objective: Objective) -> float:
        """Objective value with higher = better; missing or NaN counts as worst."""
        value = (individual.metrics or {}).get(objective.id)
        if value is None:
            return -math.inf
        value = float(value)
        if math.isnan(value):
            return -math.inf
        return value if objective.goal == Goal.MAXIMIZE else -value

    def dominates(self, p: Individual, q: Individual) -> bool:
        """
        Check whether p Pareto-dominates q.

        p dominates q if it is no worse in every objective and strictly
        better in at least one.
        """
        strictly_better = False
        for objective in self.objectives:
            p_value = self._oriented_value(p, objective)
            q_value = self._oriented_value(q, objective)
            if p_value < q_value:
                return False
            if p_value > q_value:
                strictly_better = True
        return strictly_better

    def fast_non_dominated_sort(self, population: List[Individual]) -> List[List[Individual]]:
        """
        Partition a population into non-dominated fronts.

        Sets rank (1 = first front), domination_count and dominated_set on
        each individual.

        Args:
            population: Individuals with metrics

        Returns:
            List of fronts, best first; never contains an empty front
        """
        if not population:
            return []

        fronts: List[List[Individual]] = [[]]

        for p in population:
            p.domination_count = 0
            p.dominated_set = []
            for q in population:
                if p is q:
                    continue
                if self.dominates(p, q):
                    p.dominated_set.append(q)
                elif self.dominates(q, p):
                    p.domination_count += 1
            if p.domination_count == 0:
                p.rank = 1
                fronts[0].append(p)

        i = 0
        while True:
            next_front = []
            for p in fronts[i]:
                for q in p.dominated_set:
                    q.domination_count -= 1
                    if q.domination_count == 0:
                        q.rank = i + 2
                        next_front.append(q)
            if not next_front:
                break
            fronts.append(next_front)
            i += 1

        return fronts

    def calculate_crowding_distance(self, front: List[Individual]) -> None:
        """
        Assign crowding distances within one front (in place).

        Boundary individuals of each objective get infinity; interior ones
        accumulate the normalized gap between their neighbours. Objectives
        with a zero or non-finite range contribute nothing.
        """
        if not front:
            return

        for individual in front:
            individual.crowding_distance = 0.0

        for objective in self.objectives:
            ordered = sorted(front, key=lambda ind: self._oriented_value(ind, objective))
            ordered[0].crowding_distance = math.inf
            ordered[-1].crowding_distance = math.inf

            low = self._oriented_value(ordered[0], objective)
            high = self._oriented_value(ordered[-1], objective)
            value_range = high - low
            if value_range == 0 or not math.isfinite(value_range):
                continue

            for i in range(1, len(ordered) - 1):
                gap = (
                    self._oriented_value(ordered[i + 1], objective)
                    - self._oriented_value(ordered[i - 1], objective)
                )
                ordered[i].crowding_distance += gap / value_range

    def select_parent(self) -> Individual:
        """
        Binary tournament: lower rank wins, ties go to higher crowding distance.
        """
        best = None
        for _ in range(2):
            candidate = self.population[int(self.rng.integers(len(self.population)))]
            if best is None:
                best = candidate
            elif candidate.rank < best.rank:
                best = candidate
            elif candidate.rank == best.rank and candidate.crowding_distance > best.crowding_distance:
                best = candidate
        return best

    def select_survivors(self, combined: List[Individual]) -> List[Individual]:
        """
        Build the next population of exactly population_size individuals.

        Whole fronts are taken while they fit; the overflowing front is cut
        by descending crowding distance.

        Args:
            combined: Parents plus children

        Returns:
            Next population
        """
        fronts = self.fast_non_dominated_sort(combined)
        survivors: List[Individual] = []

        for front in fronts:
            self.calculate_crowding_distance(front)
            remaining = self.population_size - len(survivors)
            if remaining <= 0:
                break
            if len(front) <= remaining:
                survivors.extend(front)
            else:
                ranked = sorted(front, key=lambda ind: ind.crowding_distance, reverse=True)
                survivors.extend(ranked[:remaining])
                break

        return survivors

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _failure_metrics(self) -> Dict[str, float]:
        return {objective.id: objective.worst_value() for objective in self.objectives}

    async def _evaluate_one(self, individual: Individual, fitness_fn: Callable) -> Individual:
        try:
            result = fitness_fn(individual.params)
            if inspect.isawaitable(result):
                result = await result

            if isinstance(result, EvaluationResult):
                individual.failed = result.failed
                individual.metrics = dict(result.metrics) if result.metrics else self._failure_metrics()
            elif result is None:
                individual.failed = True
                individual.metrics = self._failure_metrics()
            else:
                individual.metrics = {name: float(value) for name, value in dict(result).items()}
        except OptimizationCancelled:
            raise
        except Exception as e:
            logger.warning("Evaluation failed for %s: %s", individual.params, e)
            individual.failed = True
            individual.metrics = self._failure_metrics()

        return individual

    async def _evaluate_batch(self, individuals: List[Individual], fitness_fn: Callable) -> None:
        # gather preserves input order, so results map back by index
        await asyncio.gather(*(self._evaluate_one(ind, fitness_fn) for ind in individuals))

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def _make_child(self) -> Individual:
        parent_a = self.select_parent()
        parent_b = self.select_parent()
        params = mutate(
            crossover(parent_a.params, parent_b.params, self.space, self.rng),
            self.space, self.mutation_rate, self.rng
        )
        return Individual(params=params)

    async def run(self, fitness_fn: Callable, progress_callback: Optional[Callable] = None) -> List[Individual]:
        """
        Run (or resume) the optimization.

        Args:
            fitness_fn: async params -> metrics map (or EvaluationResult);
                any exception it raises marks the design as failed
            progress_callback: Optional (generation, pareto_front) -> None,
                sync or async, called after each generation

        Returns:
            Final Pareto front

        Raises:
            OptimizationCancelled: If stop() was called
        """
        self.cancel_token.reset()
        try:
            if not self.population:
                self.status = OptimizerStatus.INITIALIZING
                self.current_generation = 0
                self.population = [
                    Individual(params=initialize_random(self.space, self.rng))
                    for _ in range(self.population_size)
                ]
                self.cancel_token.raise_if_cancelled()
                await self._evaluate_batch(self.population, fitness_fn)
                self.population = self.select_survivors(self.population)
                self.pareto_front = [ind for ind in self.population if ind.rank == 1]
            else:
                pending = [ind for ind in self.population if ind.metrics is None]
                if pending:
                    await self._evaluate_batch(pending, fitness_fn)
                    self.population = self.select_survivors(self.population)
                    self.pareto_front = [ind for ind in self.population if ind.rank == 1]

            self.status = OptimizerStatus.RUNNING

            while self.current_generation < self.max_generations:
                self.cancel_token.raise_if_cancelled()

                children = [self._make_child() for _ in range(self.population_size)]
                await self._evaluate_batch(children, fitness_fn)

                self.population = self.select_survivors(self.population + children)
                self.pareto_front = [ind for ind in self.population if ind.rank == 1]
                self.current_generation += 1

                logger.debug(
                    "Generation %d/%d: front size %d",
                    self.current_generation, self.max_generations, len(self.pareto_front)
                )

                if progress_callback is not None:
                    outcome = progress_callback(self.current_generation, self.pareto_front)
                    if inspect.isawaitable(outcome):
                        await outcome

        except (OptimizationCancelled, asyncio.CancelledError):
            self.status = OptimizerStatus.CANCELLED
            raise

        self.status = OptimizerStatus.COMPLETED
        return self.pareto_front

    def stop(self) -> None:
        """Request cooperative cancellation."""
        self.cancel_token.cancel()

    # ------------------------------------------------------------------
    # Checkpointing
    # ------------------------------------------------------------------

    def get_state(self) -> Dict[str, Any]:
        """
        Snapshot the run as plain data.

        Returns:
            Dict with current_generation, population and pareto_front
        """
        return copy.deepcopy({
            "current_generation": self.current_generation,
            "population": [ind.to_dict() for ind in self.population],
            "pareto_front": [ind.to_dict() for ind in self.pareto_front],
        })

    def load_state(self, state: Dict[str, Any]) -> None:
        """
        Restore a snapshot produced by get_state().

        Ranks and crowding distances are recomputed so parent selection is
        valid immediately after loading.
        """
        state = copy.deepcopy(state)
        self.current_generation = int(state.get("current_generation", 0))
        self.population = [Individual.from_dict(item) for item in state.get("population", [])]
        if self.population:
            self.population = self.select_survivors(self.population)
        self.pareto_front = [ind for ind in self.population if ind.rank == 1]
        self.status = OptimizerStatus.UNINITIALIZED
