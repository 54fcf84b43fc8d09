"""
Exception types shared by the optimizers and the evaluation pipeline.
"""


class ConfigurationError(Exception):
    """Raised when an optimization run is configured in a way that cannot produce results."""
    pass


class EvaluationError(Exception):
    """Raised inside the evaluation pipeline when a design cannot be simulated or parsed."""
    pass


class OptimizationCancelled(Exception):
    """Raised when a run is stopped by the user."""

    def __init__(self, message: str = "Optimization cancelled"):
        super().__init__(message)


class CancellationToken:
    """
    Cooperative stop flag shared by an optimizer and its evaluation pipeline.

    Checked at generation boundaries and at every await in the pipeline.
    """

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def reset(self) -> None:
        self._cancelled = False

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OptimizationCancelled()
