"""
Mutation operator for the shading optimizer.

Each parameter mutates independently with probability mutation_rate:
continuous values get a bounded random perturbation, discrete values switch
to a different option.
"""

from typing import Dict, Any

import numpy as np

from .data_models import ParameterSpace, ContinuousParameter, DiscreteParameter
from .step_utils import snap_to_step

# Perturbation is drawn from U(-PERTURBATION_FRACTION, +PERTURBATION_FRACTION) * (max - min)
PERTURBATION_FRACTION = 0.1


def mutate(
    params: Dict[str, Any],
    space: ParameterSpace,
    mutation_rate: float,
    rng: np.random.Generator
) -> Dict[str, Any]:
    """
    Return a mutated copy of a parameter vector.

    Args:
        params: Parameter vector to mutate (not modified)
        space: Parameter space
        mutation_rate: Per-parameter mutation probability in [0, 1]
        rng: Random number generator

    Returns:
        New params dict

    Raises:
        TypeError: If the space contains an unsupported constraint kind
    """
    mutated = dict(params)

    for constraint in space:
        if rng.random() >= mutation_rate:
            continue

        if isinstance(constraint, ContinuousParameter):
            delta = float(rng.uniform(-PERTURBATION_FRACTION, PERTURBATION_FRACTION)) * constraint.span
            mutated[constraint.name] = snap_to_step(
                mutated[constraint.name] + delta,
                constraint.min, constraint.max, constraint.step
            )
        elif isinstance(constraint, DiscreteParameter):
            current = mutated[constraint.name]
            others = [option for option in constraint.options if option != current]
            if others:
                mutated[constraint.name] = others[int(rng.integers(len(others)))]
        else:
            raise TypeError(f"Unsupported parameter constraint: {type(constraint).__name__}")

    return mutated
