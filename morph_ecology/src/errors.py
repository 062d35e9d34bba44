"""Error and warning taxonomy for the analysis pipeline.

Pipeline-stage errors (schema, cleaning, scaling) abort a run. Fit errors
are fatal for one model only; the catalog fitter and the leave-one-out
sweep record them per row instead of propagating.
"""

from __future__ import annotations

from typing import Sequence


class AnalysisError(Exception):
    """Base class for every error raised by the pipeline."""


class SchemaResolutionError(AnalysisError, ValueError):
    """A required canonical column is missing after normalization."""

    def __init__(self, missing: Sequence[str], *, stage: str = "normalization") -> None:
        self.missing = list(missing)
        self.stage = str(stage)
        super().__init__(
            f"Required column(s) not found after {self.stage}: {', '.join(self.missing)}. "
            "Check the raw headers against the canonical rename table."
        )


class MissingDataExhaustionError(AnalysisError, ValueError):
    """Cleaning removed every row or every column."""

    def __init__(self, n_rows: int, n_cols: int) -> None:
        self.n_rows = int(n_rows)
        self.n_cols = int(n_cols)
        super().__init__(
            f"Cleaning left an empty table (rows={self.n_rows}, columns={self.n_cols}). "
            "Every column or every row contained a missing value."
        )


class DegenerateScalingError(AnalysisError, ValueError):
    """Attempted z-scaling of a column with zero (or undefined) variance."""

    def __init__(self, column: str, sd: float) -> None:
        self.column = str(column)
        self.sd = float(sd)
        super().__init__(f"Cannot z-scale column '{self.column}': sample sd={self.sd!r}.")


class DegenerateFitError(AnalysisError, RuntimeError):
    """A model specification cannot be fit against the given dataset variant."""

    def __init__(self, model: str, reason: str) -> None:
        self.model = str(model)
        self.reason = str(reason)
        super().__init__(f"{self.model}: {self.reason}")


class ConvergenceWarning(UserWarning):
    """Unstable or boundary estimates; attached to the fitted model."""


class SingularityWarning(ConvergenceWarning):
    """Random-intercept variance estimate collapsed to zero."""
