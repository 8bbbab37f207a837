"""Plots of influence function results."""
from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from .types import IFResult

logger = logging.getLogger(__name__)

SHAPE_COLOR = "tab:blue"
SERIES_COLOR = "tab:red"


def _ensure_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def plot_influence(
    result: IFResult,
    title: str | None = None,
    ax: plt.Axes | None = None,
    path: str | Path | None = None,
) -> plt.Axes:
    """
    Plot an influence function result.

    Shape results are drawn as IF value against the return grid, with
    the mean (when known) marked. Series results are drawn against their
    time labels, or positions when the input had none.

    Parameters
    ----------
    result : IFResult
        Output of the engine.
    title : str | None
        Plot title. Defaults to ``"IF of <estimator>"``.
    ax : plt.Axes | None
        Axes to draw on. A new figure is created when None.
    path : str | Path | None
        If given, the figure is saved there (parent directories created).

    Returns
    -------
    plt.Axes
        The axes drawn on.
    """
    created = ax is None
    if ax is None:
        fig, ax = plt.subplots(figsize=(8, 4.5))
    else:
        fig = ax.figure

    name = result.estimator.value
    if result.mode == "shape":
        ax.plot(result.x, result.values, color=SHAPE_COLOR, linewidth=1.5)
        if "mean" in result.nuisance:
            ax.axvline(result.nuisance["mean"], color="grey", linestyle=":", linewidth=1)
        ax.set_xlabel("Return value")
    else:
        positions = result.labels if result.labels is not None else np.arange(len(result))
        ax.plot(positions, result.values, color=SERIES_COLOR, linewidth=1)
        ax.set_xlabel("Time")

    ax.axhline(0.0, color="black", linewidth=0.8)
    ylabel = f"IF ({name})"
    if result.prewhitened:
        ylabel += ", prewhitened"
    ax.set_ylabel(ylabel)
    ax.set_title(title if title is not None else f"IF of {name}")
    ax.grid(True, alpha=0.3)

    if path is not None:
        path = Path(path)
        _ensure_dir(path)
        fig.tight_layout()
        fig.savefig(path, dpi=200)
        logger.info("Saved %s IF plot to %s", name, path)
        if created:
            plt.close(fig)

    return ax
