"""
Tests for the NSGA-II optimizer: dominance, sorting, crowding, survivors, run loop.
"""

import math
import unittest
import numpy as np

from shade_ga.data_models import (
    ContinuousParameter,
    DiscreteParameter,
    Goal,
    Individual,
    Objective,
    ParameterSpace,
)
from shade_ga.errors import ConfigurationError, EvaluationError, OptimizationCancelled, CancellationToken
from shade_ga.nsga2 import NSGA2Optimizer, OptimizerStatus


def make_space():
    return ParameterSpace([ContinuousParameter("x", 0.0, 10.0, 1.0)])


def make_individual(**metrics):
    return Individual(params={"x": 0.0}, metrics=dict(metrics))


class TestDominance(unittest.TestCase):
    """Test the dominance relation."""

    def setUp(self):
        self.optimizer = NSGA2Optimizer(
            make_space(),
            [Objective("sda", Goal.MAXIMIZE), Objective("ase", Goal.MINIMIZE)],
            rng=np.random.default_rng(0),
        )

    def test_mixed_directions(self):
        a = make_individual(sda=80, ase=5)
        b = make_individual(sda=70, ase=6)
        self.assertTrue(self.optimizer.dominates(a, b))
        self.assertFalse(self.optimizer.dominates(b, a))

    def test_equal_vectors_do_not_dominate(self):
        a = make_individual(sda=80, ase=5)
        b = make_individual(sda=80, ase=5)
        self.assertFalse(self.optimizer.dominates(a, b))
        self.assertFalse(self.optimizer.dominates(b, a))

    def test_trade_off_is_mutually_non_dominated(self):
        a = make_individual(sda=80, ase=8)
        b = make_individual(sda=70, ase=4)
        self.assertFalse(self.optimizer.dominates(a, b))
        self.assertFalse(self.optimizer.dominates(b, a))

    def test_missing_and_nan_metrics_are_worst(self):
        good = make_individual(sda=10, ase=50)
        missing = make_individual(sda=10)
        nan = make_individual(sda=float("nan"), ase=50)
        self.assertTrue(self.optimizer.dominates(good, missing))
        self.assertTrue(self.optimizer.dominates(good, nan))


class TestSorting(unittest.TestCase):
    """Test fast non-dominated sort and crowding distance."""

    def setUp(self):
        self.optimizer = NSGA2Optimizer(
            make_space(),
            [Objective("f1", Goal.MAXIMIZE), Objective("f2", Goal.MAXIMIZE)],
            population_size=4,
            rng=np.random.default_rng(0),
        )

    def test_fronts_and_ranks(self):
        a = make_individual(f1=3, f2=1)
        b = make_individual(f1=1, f2=3)
        c = make_individual(f1=2, f2=0.5)   # dominated by a
        d = make_individual(f1=0, f2=0)     # dominated by everything

        fronts = self.optimizer.fast_non_dominated_sort([a, b, c, d])

        self.assertEqual(len(fronts), 3)
        self.assertCountEqual(fronts[0], [a, b])
        self.assertEqual(fronts[1], [c])
        self.assertEqual(fronts[2], [d])
        self.assertEqual((a.rank, b.rank, c.rank, d.rank), (1, 1, 2, 3))

    def test_front_is_mutually_non_dominated(self):
        rng = np.random.default_rng(42)
        population = [make_individual(f1=float(rng.random()), f2=float(rng.random())) for _ in range(30)]
        fronts = self.optimizer.fast_non_dominated_sort(population)

        self.assertEqual(sum(len(front) for front in fronts), 30)
        for front in fronts:
            self.assertTrue(front)
            for p in front:
                for q in front:
                    self.assertFalse(self.optimizer.dominates(p, q))

    def test_empty_population(self):
        self.assertEqual(self.optimizer.fast_non_dominated_sort([]), [])

    def test_crowding_distance_single_varying_objective(self):
        low = make_individual(f1=0, f2=1)
        mid = make_individual(f1=5, f2=1)
        high = make_individual(f1=10, f2=1)

        self.optimizer.calculate_crowding_distance([low, mid, high])

        self.assertEqual(low.crowding_distance, math.inf)
        self.assertEqual(high.crowding_distance, math.inf)
        self.assertAlmostEqual(mid.crowding_distance, 1.0)

    def test_crowding_distance_sums_objectives(self):
        a = make_individual(f1=0, f2=4)
        b = make_individual(f1=1, f2=3)
        c = make_individual(f1=3, f2=1)
        d = make_individual(f1=4, f2=0)

        self.optimizer.calculate_crowding_distance([a, b, c, d])

        self.assertEqual(a.crowding_distance, math.inf)
        self.assertEqual(d.crowding_distance, math.inf)
        # (3 - 0) / 4 for each objective
        self.assertAlmostEqual(b.crowding_distance, 1.5)
        self.assertAlmostEqual(c.crowding_distance, 1.5)

    def test_crowding_distance_with_failed_individual(self):
        ok_a = make_individual(f1=1, f2=2)
        ok_b = make_individual(f1=2, f2=1)
        failed = make_individual(f1=-math.inf, f2=-math.inf)
        self.optimizer.calculate_crowding_distance([ok_a, failed, ok_b])
        for individual in (ok_a, ok_b, failed):
            self.assertFalse(math.isnan(individual.crowding_distance))


class TestSurvivorSelection(unittest.TestCase):
    """Test elitist survivor selection."""

    def test_cutoff_front_keeps_most_crowded_out(self):
        optimizer = NSGA2Optimizer(
            make_space(),
            [Objective("f1", Goal.MAXIMIZE), Objective("f2", Goal.MAXIMIZE)],
            population_size=4,
            rng=np.random.default_rng(0),
        )
        # First front of 2, second front of 4 -> only 2 of the second survive
        first = [make_individual(f1=10, f2=10), make_individual(f1=11, f2=9.5)]
        second = [
            make_individual(f1=9, f2=-1),
            make_individual(f1=5, f2=3),
            make_individual(f1=4.5, f2=3.5),
            make_individual(f1=-1, f2=9),
        ]

        survivors = optimizer.select_survivors(first + second)

        self.assertEqual(len(survivors), 4)
        for individual in first:
            self.assertIn(individual, survivors)
        # Boundaries of the second front have infinite crowding distance
        self.assertIn(second[0], survivors)
        self.assertIn(second[3], survivors)
        self.assertNotIn(second[1], survivors)
        self.assertNotIn(second[2], survivors)

    def test_selection_size_is_exact(self):
        optimizer = NSGA2Optimizer(
            make_space(),
            [Objective("f1", Goal.MAXIMIZE), Objective("f2", Goal.MINIMIZE)],
            population_size=7,
            rng=np.random.default_rng(0),
        )
        rng = np.random.default_rng(8)
        combined = [make_individual(f1=float(rng.random()), f2=float(rng.random())) for _ in range(14)]
        survivors = optimizer.select_survivors(combined)
        self.assertEqual(len(survivors), 7)
        self.assertEqual(len({id(ind) for ind in survivors}), 7)


class TestConfiguration(unittest.TestCase):
    """Test constructor validation."""

    def test_requires_two_objectives(self):
        with self.assertRaises(ConfigurationError):
            NSGA2Optimizer(make_space(), [Objective("f1")])

    def test_rejects_set_target(self):
        with self.assertRaises(ConfigurationError):
            NSGA2Optimizer(make_space(), [Objective("f1"), Objective("f2", Goal.SET_TARGET, 5.0)])

    def test_rejects_bad_ga_settings(self):
        objectives = [Objective("f1"), Objective("f2")]
        with self.assertRaises(ConfigurationError):
            NSGA2Optimizer(make_space(), objectives, population_size=1)
        with self.assertRaises(ConfigurationError):
            NSGA2Optimizer(make_space(), objectives, mutation_rate=1.5)
        with self.assertRaises(ConfigurationError):
            NSGA2Optimizer(make_space(), objectives, max_generations=-1)


class TestRun(unittest.IsolatedAsyncioTestCase):
    """Test the generational loop."""

    def make_optimizer(self, seed=0, **kwargs):
        settings = dict(population_size=4, max_generations=10, mutation_rate=0.5)
        settings.update(kwargs)
        return NSGA2Optimizer(
            make_space(),
            [Objective("f1", Goal.MAXIMIZE), Objective("f2", Goal.MINIMIZE)],
            rng=np.random.default_rng(seed),
            **settings
        )

    @staticmethod
    async def aligned_fitness(params):
        # Both objectives improve with x, so the front collapses on x = 10
        x = params["x"]
        return {"f1": x, "f2": 10 - x}

    async def test_converges_to_upper_bound(self):
        hits = 0
        for seed in range(5):
            optimizer = self.make_optimizer(seed, max_generations=30)
            front = await optimizer.run(self.aligned_fitness)
            if max(ind.params["x"] for ind in front) == 10.0:
                hits += 1
        self.assertGreaterEqual(hits, 4)

    async def test_progress_callback_and_final_state(self):
        calls = []
        optimizer = self.make_optimizer(1, max_generations=3)

        async def on_progress(generation, front):
            calls.append((generation, len(front)))

        front = await optimizer.run(self.aligned_fitness, on_progress)

        self.assertEqual([generation for generation, _ in calls], [1, 2, 3])
        self.assertEqual(optimizer.status, OptimizerStatus.COMPLETED)
        self.assertEqual(len(optimizer.population), 4)
        self.assertTrue(all(ind.rank == 1 for ind in front))
        self.assertTrue(all(ind in optimizer.population for ind in front))

    async def test_sync_fitness_function(self):
        optimizer = self.make_optimizer(2, max_generations=2)
        front = await optimizer.run(lambda params: {"f1": params["x"], "f2": params["x"]})
        self.assertTrue(front)

    async def test_failed_evaluations_get_worst_metrics(self):
        async def flaky(params):
            if params["x"] < 5:
                raise EvaluationError("simulation crashed")
            return {"f1": params["x"], "f2": 10 - params["x"]}

        optimizer = self.make_optimizer(3, max_generations=2)
        await optimizer.run(flaky)

        for individual in optimizer.population:
            if individual.params["x"] < 5:
                self.assertTrue(individual.failed)
                self.assertEqual(individual.metrics, {"f1": -math.inf, "f2": math.inf})

    async def test_any_exception_marks_design_failed(self):
        calls = []

        async def broken(params):
            calls.append(params)
            if len(calls) == 1 or params["x"] > 7:
                raise ValueError("unreadable result file")
            return {"f1": params["x"], "f2": 10 - params["x"]}

        optimizer = self.make_optimizer(0, max_generations=3)
        with self.assertLogs("shade_ga.nsga2", level="WARNING"):
            front = await optimizer.run(broken)

        self.assertEqual(optimizer.status, OptimizerStatus.COMPLETED)
        self.assertTrue(front)
        self.assertEqual(len(calls), 4 * 4)
        for individual in optimizer.population:
            if individual.params["x"] > 7:
                self.assertTrue(individual.failed)
                self.assertEqual(individual.metrics, {"f1": -math.inf, "f2": math.inf})

    async def test_malformed_result_marks_design_failed(self):
        optimizer = self.make_optimizer(1, max_generations=1)
        with self.assertLogs("shade_ga.nsga2", level="WARNING"):
            await optimizer.run(lambda params: "not a metrics map")
        self.assertTrue(all(ind.failed for ind in optimizer.population))

    async def test_cancellation(self):
        token = CancellationToken()
        optimizer = NSGA2Optimizer(
            make_space(), [Objective("f1"), Objective("f2")],
            population_size=4, max_generations=50,
            rng=np.random.default_rng(0), cancel_token=token
        )

        def stop_after_two(generation, front):
            if generation == 2:
                optimizer.stop()

        with self.assertRaises(OptimizationCancelled):
            await optimizer.run(self.aligned_fitness, stop_after_two)

        self.assertEqual(optimizer.status, OptimizerStatus.CANCELLED)
        self.assertEqual(optimizer.current_generation, 2)
        self.assertTrue(token.cancelled)

    async def test_resume_after_stop_in_same_process(self):
        optimizer = self.make_optimizer(7, max_generations=5)

        def stop_after_two(generation, front):
            if generation == 2:
                optimizer.stop()

        with self.assertRaises(OptimizationCancelled):
            await optimizer.run(self.aligned_fitness, stop_after_two)

        optimizer.load_state(optimizer.get_state())
        front = await optimizer.run(self.aligned_fitness)

        self.assertEqual(optimizer.status, OptimizerStatus.COMPLETED)
        self.assertEqual(optimizer.current_generation, 5)
        self.assertTrue(front)

    async def test_resume_from_state(self):
        optimizer = self.make_optimizer(4, max_generations=2)
        await optimizer.run(self.aligned_fitness)
        state = optimizer.get_state()

        self.assertEqual(state["current_generation"], 2)
        self.assertEqual(len(state["population"]), 4)

        evaluated = []

        async def counting(params):
            evaluated.append(params)
            return await self.aligned_fitness(params)

        resumed = self.make_optimizer(5, max_generations=4)
        resumed.load_state(state)
        self.assertEqual(resumed.status, OptimizerStatus.UNINITIALIZED)
        self.assertTrue(all(ind.rank >= 1 for ind in resumed.population))

        await resumed.run(counting)

        self.assertEqual(resumed.current_generation, 4)
        # Only the two remaining generations of children are evaluated
        self.assertEqual(len(evaluated), 2 * 4)

    async def test_state_is_a_snapshot(self):
        optimizer = self.make_optimizer(6, max_generations=1)
        await optimizer.run(self.aligned_fitness)
        state = optimizer.get_state()
        state["population"][0]["params"]["x"] = -99
        self.assertNotEqual(optimizer.population[0].params["x"], -99)

    async def test_discrete_parameters(self):
        space = ParameterSpace([
            ContinuousParameter("depth", 0.0, 1.0, 0.1),
            DiscreteParameter("placement", ("ext", "int")),
        ])
        optimizer = NSGA2Optimizer(
            space, [Objective("f1"), Objective("f2", Goal.MINIMIZE)],
            population_size=6, max_generations=3, rng=np.random.default_rng(9)
        )

        async def fitness(params):
            bonus = 1.0 if params["placement"] == "ext" else 0.0
            return {"f1": params["depth"] + bonus, "f2": params["depth"]}

        front = await optimizer.run(fitness)
        for individual in front:
            self.assertIn(individual.params["placement"], ("ext", "int"))


if __name__ == '__main__':
    unittest.main()
