"""
Tests for parameter spaces, step snapping, crossover, and mutation.
"""

import unittest
import numpy as np

from shade_ga.data_models import (
    ContinuousParameter,
    DiscreteParameter,
    ParameterSpace,
    parameter_from_dict,
)
from shade_ga.errors import ConfigurationError
from shade_ga.step_utils import snap_to_step, random_value, initialize_random, is_in_space
from shade_ga.crossover import crossover
from shade_ga.mutation import mutate


def on_grid(value, constraint):
    k = (value - constraint.min) / constraint.step
    return abs(k - round(k)) < 1e-6


class TestParameterSpace(unittest.TestCase):
    """Test parameter definitions and the space container."""

    def test_continuous_rejects_inverted_bounds(self):
        with self.assertRaises(ConfigurationError):
            ContinuousParameter("depth", 2.0, 1.0, 0.1)

    def test_continuous_rejects_negative_step(self):
        with self.assertRaises(ConfigurationError):
            ContinuousParameter("depth", 0.0, 1.0, -0.1)

    def test_discrete_rejects_empty_options(self):
        with self.assertRaises(ConfigurationError):
            DiscreteParameter("placement", [])

    def test_discrete_options_become_tuple(self):
        param = DiscreteParameter("placement", ["ext", "int"])
        self.assertEqual(param.options, ("ext", "int"))

    def test_space_rejects_duplicates(self):
        with self.assertRaises(ConfigurationError):
            ParameterSpace([
                ContinuousParameter("depth", 0, 1, 0.1),
                ContinuousParameter("depth", 0, 2, 0.1),
            ])

    def test_space_rejects_empty(self):
        with self.assertRaises(ConfigurationError):
            ParameterSpace([])

    def test_parameter_from_dict(self):
        param = parameter_from_dict({"id": "tilt", "type": "continuous", "min": -90, "max": 90, "step": 5})
        self.assertIsInstance(param, ContinuousParameter)
        self.assertEqual(param.name, "tilt")
        self.assertEqual(param.step, 5.0)

        param = parameter_from_dict({"name": "placement", "type": "discrete", "options": ["ext"]})
        self.assertIsInstance(param, DiscreteParameter)

        with self.assertRaises(ConfigurationError):
            parameter_from_dict({"name": "x", "type": "integer"})
        with self.assertRaises(ConfigurationError):
            parameter_from_dict({"name": "x", "type": "continuous", "min": 0})

    def test_space_round_trips_through_list(self):
        space = ParameterSpace([
            ContinuousParameter("depth", 0.0, 1.0, 0.1),
            DiscreteParameter("placement", ("ext", "int")),
        ])
        rebuilt = ParameterSpace.from_list(space.to_list())
        self.assertEqual(rebuilt.names, ["depth", "placement"])
        self.assertEqual(rebuilt.get("placement").options, ("ext", "int"))


class TestStepUtils(unittest.TestCase):
    """Test snapping and random initialization."""

    def test_snap_to_step(self):
        self.assertAlmostEqual(snap_to_step(0.43, 0.0, 1.0, 0.1), 0.4)
        self.assertAlmostEqual(snap_to_step(0.46, 0.0, 1.0, 0.1), 0.5)
        self.assertEqual(snap_to_step(0.3000000004, 0.0, 1.0, 0.1), 0.3)

    def test_snap_clamps(self):
        self.assertEqual(snap_to_step(1.7, 0.0, 1.0, 0.1), 1.0)
        self.assertEqual(snap_to_step(-3.0, 0.0, 1.0, 0.1), 0.0)

    def test_snap_grid_is_anchored_at_min(self):
        self.assertAlmostEqual(snap_to_step(0.26, 0.05, 1.0, 0.1), 0.25)

    def test_zero_step_only_clamps(self):
        self.assertEqual(snap_to_step(0.4321, 0.0, 1.0, 0.0), 0.4321)
        self.assertEqual(snap_to_step(5.0, 0.0, 1.0, 0.0), 1.0)

    def test_random_values_are_valid(self):
        rng = np.random.default_rng(3)
        depth = ContinuousParameter("depth", 0.1, 2.0, 0.1)
        placement = DiscreteParameter("placement", ("ext", "int", "both"))
        for _ in range(200):
            value = random_value(depth, rng)
            self.assertTrue(0.1 <= value <= 2.0)
            self.assertTrue(on_grid(value, depth))
            self.assertIn(random_value(placement, rng), placement.options)

    def test_random_value_unknown_kind(self):
        with self.assertRaises(TypeError):
            random_value(object(), np.random.default_rng(0))

    def test_initialize_random_covers_space(self):
        space = ParameterSpace([
            ContinuousParameter("depth", 0.1, 2.0, 0.1),
            DiscreteParameter("placement", ("ext", "int")),
        ])
        params = initialize_random(space, np.random.default_rng(0))
        self.assertEqual(set(params), {"depth", "placement"})
        self.assertTrue(is_in_space(params, space))

    def test_is_in_space(self):
        space = ParameterSpace([ContinuousParameter("depth", 0.0, 1.0, 0.1)])
        self.assertTrue(is_in_space({"depth": 0.5}, space))
        self.assertFalse(is_in_space({"depth": 1.5}, space))
        self.assertFalse(is_in_space({}, space))


class TestCrossover(unittest.TestCase):
    """Test blend crossover."""

    def setUp(self):
        self.space = ParameterSpace([
            ContinuousParameter("depth", 0.0, 2.0, 0.1),
            DiscreteParameter("placement", ("ext", "int", "both")),
        ])
        self.rng = np.random.default_rng(11)

    def test_child_lies_between_parents(self):
        a = {"depth": 0.4, "placement": "ext"}
        b = {"depth": 1.6, "placement": "int"}
        for _ in range(100):
            child = crossover(a, b, self.space, self.rng)
            self.assertGreaterEqual(child["depth"], 0.4 - 1e-9)
            self.assertLessEqual(child["depth"], 1.6 + 1e-9)
            self.assertTrue(on_grid(child["depth"], self.space.get("depth")))
            self.assertIn(child["placement"], ("ext", "int"))

    def test_identical_parents_give_identical_child(self):
        a = {"depth": 0.7, "placement": "both"}
        child = crossover(a, dict(a), self.space, self.rng)
        self.assertAlmostEqual(child["depth"], 0.7)
        self.assertEqual(child["placement"], "both")

    def test_discrete_inherits_from_both_parents(self):
        a = {"depth": 0.0, "placement": "ext"}
        b = {"depth": 0.0, "placement": "int"}
        seen = {crossover(a, b, self.space, self.rng)["placement"] for _ in range(100)}
        self.assertEqual(seen, {"ext", "int"})

    def test_parents_not_modified(self):
        a = {"depth": 0.4, "placement": "ext"}
        b = {"depth": 1.6, "placement": "int"}
        crossover(a, b, self.space, self.rng)
        self.assertEqual(a, {"depth": 0.4, "placement": "ext"})
        self.assertEqual(b, {"depth": 1.6, "placement": "int"})


class TestMutation(unittest.TestCase):
    """Test per-parameter mutation."""

    def setUp(self):
        self.space = ParameterSpace([
            ContinuousParameter("depth", 0.0, 2.0, 0.1),
            DiscreteParameter("placement", ("ext", "int", "both")),
        ])
        self.rng = np.random.default_rng(5)

    def test_zero_rate_is_identity(self):
        params = {"depth": 1.0, "placement": "ext"}
        for _ in range(50):
            self.assertEqual(mutate(params, self.space, 0.0, self.rng), params)

    def test_full_rate_changes_discrete(self):
        params = {"depth": 1.0, "placement": "ext"}
        for _ in range(50):
            mutated = mutate(params, self.space, 1.0, self.rng)
            self.assertNotEqual(mutated["placement"], "ext")

    def test_continuous_perturbation_is_bounded(self):
        params = {"depth": 1.0, "placement": "ext"}
        for _ in range(200):
            mutated = mutate(params, self.space, 1.0, self.rng)
            # At most 10% of the span, plus half a step of snapping
            self.assertLessEqual(abs(mutated["depth"] - 1.0), 0.2 + 0.05 + 1e-9)
            self.assertTrue(on_grid(mutated["depth"], self.space.get("depth")))

    def test_mutation_stays_in_bounds(self):
        params = {"depth": 2.0, "placement": "ext"}
        for _ in range(200):
            mutated = mutate(params, self.space, 1.0, self.rng)
            self.assertTrue(is_in_space(mutated, self.space))

    def test_single_option_is_never_changed(self):
        space = ParameterSpace([DiscreteParameter("placement", ("ext",))])
        self.assertEqual(mutate({"placement": "ext"}, space, 1.0, self.rng), {"placement": "ext"})

    def test_input_not_modified(self):
        params = {"depth": 1.0, "placement": "ext"}
        mutate(params, self.space, 1.0, self.rng)
        self.assertEqual(params, {"depth": 1.0, "placement": "ext"})


if __name__ == '__main__':
    unittest.main()
