"""
Constraint expressions such as "ASE < 10" or "DGP <= 0.40".

A violated constraint marks a design invalid; it is not an error.
"""

import math
import re
from dataclasses import dataclass
from typing import Dict, Optional

from .errors import ConfigurationError

EQUALITY_TOLERANCE = 0.01

_CONSTRAINT_PATTERN = re.compile(
    r"^\s*(?P<metric>[A-Za-z_][\w.\-]*)?\s*(?P<op><=|>=|==|<|>)\s*(?P<value>[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?)\s*$"
)


@dataclass(frozen=True)
class Constraint:
    """
    Parsed inequality on one metric.

    Attributes:
        metric: Metric id the constraint refers to (None = primary metric)
        operator: One of <, <=, >, >=, ==
        threshold: Right-hand side value
    """
    metric: Optional[str]
    operator: str
    threshold: float

    def check(self, value: float) -> bool:
        """
        Evaluate the constraint against a value.

        NaN never satisfies a constraint.
        """
        if value is None or math.isnan(value):
            return False
        if self.operator == "<":
            return value < self.threshold
        if self.operator == "<=":
            return value <= self.threshold
        if self.operator == ">":
            return value > self.threshold
        if self.operator == ">=":
            return value >= self.threshold
        return abs(value - self.threshold) < EQUALITY_TOLERANCE

    def check_metrics(self, metrics: Dict[str, float], fallback_value: float) -> bool:
        """
        Evaluate against a metrics map.

        The named metric is looked up case-insensitively; if the constraint has
        no metric or the metric is absent, fallback_value is used instead.

        Args:
            metrics: Metric id -> value
            fallback_value: Primary metric value

        Returns:
            True if the constraint holds
        """
        value = fallback_value
        if self.metric:
            wanted = self.metric.lower()
            for name, metric_value in (metrics or {}).items():
                if name.lower() == wanted:
                    value = metric_value
                    break
        return self.check(value)

    def __str__(self) -> str:
        prefix = f"{self.metric} " if self.metric else ""
        return f"{prefix}{self.operator} {self.threshold:g}"


def parse_constraint(text: str) -> Constraint:
    """
    Parse a constraint expression.

    Args:
        text: Expression like "ASE < 10", "sDA >= 55" or "< 0.4"

    Returns:
        Constraint

    Raises:
        ConfigurationError: If the text is not a valid expression
    """
    if not isinstance(text, str):
        raise ConfigurationError(f"Constraint must be a string, got {type(text).__name__}")

    match = _CONSTRAINT_PATTERN.match(text)
    if match is None:
        raise ConfigurationError(
            f"Invalid constraint '{text}'. Expected '<metric> <op> <number>' with op in <, <=, >, >=, =="
        )

    return Constraint(
        metric=match.group("metric"),
        operator=match.group("op"),
        threshold=float(match.group("value")),
    )


def parse_optional_constraint(text: Optional[str]) -> Optional[Constraint]:
    """Parse a constraint, treating None or blank text as no constraint."""
    if text is None or (isinstance(text, str) and not text.strip()):
        return None
    return parse_constraint(text)
