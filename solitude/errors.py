"""
Error types raised across the pipeline.

DataUnavailable and SchemaError abort a report build before any model is
fitted. FitError is fatal for a single (outcome, variant) pair only; the
orchestration layer records it and moves on. ConvergenceWarning is a warning
category, not an exception: the fit is still reported, annotated.
"""

from __future__ import annotations

from statsmodels.tools.sm_exceptions import ConvergenceWarning as _SMConvergenceWarning


class DataUnavailable(RuntimeError):
    """Input file missing locally and could not be fetched."""


class SchemaError(KeyError):
    """Expected column absent (or key structure violated) after load."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class FitError(RuntimeError):
    """The fitting routine could not produce an estimate at all."""

    def __init__(self, message: str, outcome: str | None = None, variant: str | None = None):
        super().__init__(message)
        self.outcome = outcome
        self.variant = variant


class ConvergenceWarning(_SMConvergenceWarning):
    """Fit completed but flagged singular/boundary variance or non-convergence."""
