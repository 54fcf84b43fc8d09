"""
Shading Optimizer - genetic search over shading device parameters.

This package searches the parameter space of a shading device (overhang,
light shelf, louvers, roller shade) for designs that maximize daylight or
trade off several daylight metrics, scoring each candidate with an external
simulation.

Key Features:
- Single-objective steady-state GA with optional metric constraint
- Multi-objective NSGA-II with Pareto front reporting
- Session fitness cache keyed by canonical parameter vectors
- Fault-tolerant, cancellable evaluation pipeline
- Post-hoc range suggestion and sensitivity summaries

Modules:
- data_models: Parameter space, objectives, individuals, evaluation results
- step_utils: Grid snapping and random initialization
- crossover / mutation: Genetic operators
- fitness_cache: Evaluation cache and its persistence records
- constraints: Metric inequality parsing and checking
- ssga / nsga2: Optimizers
- engine_interface: Evaluation pipeline around the simulation collaborators
- analysis: Range suggestion and result datasets
- io_utils: Checkpoints, cache files, CSV tables, metadata
- cli / orchestration: Run configuration and mode workflows
"""

__version__ = "0.1.0"
__author__ = "Daylighting Optimization Team"

from .data_models import (
    Goal,
    ContinuousParameter,
    DiscreteParameter,
    ParameterSpace,
    Objective,
    Individual,
    EvaluationResult,
)
from .errors import ConfigurationError, EvaluationError, OptimizationCancelled, CancellationToken
from .fitness_cache import FitnessCache, CacheEntry

__all__ = [
    "Goal",
    "ContinuousParameter",
    "DiscreteParameter",
    "ParameterSpace",
    "Objective",
    "Individual",
    "EvaluationResult",
    "ConfigurationError",
    "EvaluationError",
    "OptimizationCancelled",
    "CancellationToken",
    "FitnessCache",
    "CacheEntry",
]
