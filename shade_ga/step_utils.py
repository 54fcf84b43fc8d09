"""
Step-grid utilities for the shading optimizer.

Snapping of continuous values onto their parameter grid and uniform random
initialization of parameter vectors.
"""

import math
from typing import Dict, Any

import numpy as np

from .data_models import ParameterSpace, ContinuousParameter, DiscreteParameter


def snap_to_step(value: float, min_value: float, max_value: float, step: float) -> float:
    """
    Snap a value onto the grid min + k*step and clamp it to [min, max].

    Args:
        value: Raw value
        min_value: Lower bound
        max_value: Upper bound
        step: Grid increment (<= 0 disables snapping)

    Returns:
        Snapped value inside [min_value, max_value]

    Example:
        >>> snap_to_step(0.43, 0.0, 1.0, 0.1)
        0.4
        >>> snap_to_step(1.7, 0.0, 1.0, 0.1)
        1.0
    """
    if step > 0:
        k = math.floor((value - min_value) / step + 0.5)
        # Trim float noise (0.30000000000000004 -> 0.3)
        value = round(min_value + k * step, 10)

    return float(min(max(value, min_value), max_value))


def random_value(constraint, rng: np.random.Generator) -> Any:
    """
    Draw one random value for a parameter.

    Args:
        constraint: ContinuousParameter or DiscreteParameter
        rng: Random number generator

    Returns:
        Snapped float for continuous parameters, an option for discrete ones

    Raises:
        TypeError: If the constraint kind is not supported
    """
    if isinstance(constraint, ContinuousParameter):
        raw = float(rng.uniform(constraint.min, constraint.max))
        return snap_to_step(raw, constraint.min, constraint.max, constraint.step)

    if isinstance(constraint, DiscreteParameter):
        return constraint.options[int(rng.integers(len(constraint.options)))]

    raise TypeError(f"Unsupported parameter constraint: {type(constraint).__name__}")


def initialize_random(space: ParameterSpace, rng: np.random.Generator) -> Dict[str, Any]:
    """
    Create a random parameter vector covering every parameter in the space.

    Args:
        space: Parameter space
        rng: Random number generator

    Returns:
        Dict mapping parameter name -> value
    """
    return {constraint.name: random_value(constraint, rng) for constraint in space}


def is_in_space(params: Dict[str, Any], space: ParameterSpace) -> bool:
    """
    Check that a parameter vector lies inside the space.

    Continuous values must be within bounds; discrete values must be one of
    the options. Missing parameters fail the check.
    """
    for constraint in space:
        if constraint.name not in params:
            return False
        value = params[constraint.name]
        if isinstance(constraint, ContinuousParameter):
            if not (constraint.min - 1e-9 <= value <= constraint.max + 1e-9):
                return False
        elif value not in constraint.options:
            return False
    return True
