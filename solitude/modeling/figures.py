"""Plain prediction-curve figures (one PNG per model)."""

from __future__ import annotations

from pathlib import Path
from typing import Union

import matplotlib.pyplot as plt
import pandas as pd

from ..preprocessing.constants import OUTCOMES
from .specs import VARIANT_LABELS

COLORS = ("#1f77b4", "#d62728", "#2ca02c", "#9467bd")


def _outcome_label(column: str) -> str:
    return next((name for name, col in OUTCOMES.items() if col == column), column)


def plot_prediction_curve(
    curve: pd.DataFrame,
    path: Union[str, Path],
    focal: str = "ltime_pmc",
    dpi: int = 160,
) -> Path:
    """
    Draw estimate lines with 95% bands, one per moderator value.

    Args:
        curve: Output of predict_curve()
        path: PNG destination (parent directories are created)
        focal: Column plotted on the x axis

    Returns:
        Path of the written figure
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    outcome = str(curve["outcome"].iloc[0])
    variant = str(curve["variant"].iloc[0])

    fig, ax = plt.subplots(figsize=(7, 5))
    if "moderator_value" in curve.columns:
        groups = list(curve.groupby("moderator_value", sort=True))
        labels = ["Low (-1 SD)", "High (+1 SD)"] if len(groups) == 2 else [f"{v:.2f}" for v, _ in groups]
    else:
        groups = [(None, curve)]
        labels = [None]

    for i, ((_, block), label) in enumerate(zip(groups, labels)):
        color = COLORS[i % len(COLORS)]
        ax.plot(block[focal], block["estimate"], color=color, linewidth=2, label=label)
        ax.fill_between(block[focal], block["lower"], block["upper"], color=color, alpha=0.2)

    ax.set_title(f"{_outcome_label(outcome)}: {VARIANT_LABELS.get(variant, variant)}")
    ax.set_xlabel("Time spent alone (within-person, centred)")
    ax.set_ylabel(f"Predicted {_outcome_label(outcome).lower()}")
    ax.grid(True, axis="y", alpha=0.2)
    if labels[0] is not None:
        ax.legend(loc="best")
    fig.tight_layout()
    fig.savefig(path, dpi=dpi)
    plt.close(fig)
    return path
