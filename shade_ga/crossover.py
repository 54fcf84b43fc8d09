"""
Crossover operator for the shading optimizer.

Blend crossover for continuous parameters and uniform inheritance for
discrete ones. Every child is snapped back onto the parameter grid.
"""

from typing import Dict, Any

import numpy as np

from .data_models import ParameterSpace, ContinuousParameter, DiscreteParameter
from .step_utils import snap_to_step


def crossover(
    parent_a: Dict[str, Any],
    parent_b: Dict[str, Any],
    space: ParameterSpace,
    rng: np.random.Generator
) -> Dict[str, Any]:
    """
    Combine two parent parameter vectors into one child.

    For each continuous parameter a blend factor alpha ~ U(0, 1) is drawn and
    the child value is alpha*a + (1 - alpha)*b, snapped to the step grid.
    Discrete parameters are inherited from either parent with equal
    probability.

    Args:
        parent_a: First parent's params
        parent_b: Second parent's params
        space: Parameter space
        rng: Random number generator

    Returns:
        Child params

    Raises:
        TypeError: If the space contains an unsupported constraint kind
    """
    child = {}

    for constraint in space:
        value_a = parent_a[constraint.name]
        value_b = parent_b[constraint.name]

        if isinstance(constraint, ContinuousParameter):
            alpha = float(rng.random())
            blended = alpha * value_a + (1.0 - alpha) * value_b
            child[constraint.name] = snap_to_step(
                blended, constraint.min, constraint.max, constraint.step
            )
        elif isinstance(constraint, DiscreteParameter):
            child[constraint.name] = value_a if rng.random() < 0.5 else value_b
        else:
            raise TypeError(f"Unsupported parameter constraint: {type(constraint).__name__}")

    return child
