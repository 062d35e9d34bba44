from __future__ import annotations

import os
from typing import Optional, Sequence, Tuple

import numpy as np

import matplotlib
matplotlib.use("Agg")

import matplotlib.pyplot as plt

# Black-on-white figures for print; no titles are ever set.
GRAYSCALE_RC = {
    "image.cmap": "Greys",
    "text.color": "black",
    "axes.labelcolor": "black",
    "axes.edgecolor": "0.2",
    "xtick.color": "black",
    "ytick.color": "black",
    "grid.color": "0.5",
}

FIGURE_FORMATS: Tuple[str, ...] = ("png", "pdf")


def set_grayscale_style() -> None:
    matplotlib.rcParams.update(GRAYSCALE_RC)


def save_figure(fig: plt.Figure, base_path: str, *, dpi: int = 300) -> None:
    """Write `fig` once per FIGURE_FORMATS entry as `base_path.<ext>`, then close it.

    `dpi` only affects raster output.
    """

    folder = os.path.dirname(base_path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    for ext in FIGURE_FORMATS:
        kwargs = {"dpi": dpi} if ext == "png" else {}
        fig.savefig(f"{base_path}.{ext}", bbox_inches="tight", **kwargs)
    plt.close(fig)


def residuals_vs_fitted(
    fitted: Sequence[float],
    residuals: Sequence[float],
    *,
    base_path: str,
    xlabel: str = "Fitted value",
    ylabel: str = "Residual",
    figsize: Tuple[float, float] = (5.0, 4.0),
    dpi: int = 300,
) -> None:
    set_grayscale_style()
    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(np.asarray(fitted, dtype=float), np.asarray(residuals, dtype=float), s=18, color="0.25")
    ax.axhline(0.0, linestyle="--", color="0.4", linewidth=1.0)
    ax.set_xlabel(xlabel)
    ax.set_ylabel(ylabel)
    ax.grid(alpha=0.3)
    save_figure(fig, base_path, dpi=dpi)


def histogram(
    values: Sequence[float],
    *,
    bins: int,
    xlabel: str,
    ylabel: str,
    base_path: str,
    figsize: Tuple[float, float] = (5.0, 4.0),
    dpi: int = 300,
) -> None:
    """Histogram helper (grayscale, no title)."""

    set_grayscale_style()
    v = np.asarray(values, dtype=float)
    v = v[np.isfinite(v)]

    fig, ax = plt.subplots(figsize=figsize)
    ax.hist(v, bins=bins, color="0.25", edgecolor="0.25")
    ax.set_xlabel(xlabel)
    ax.set_ylabel(ylabel)
    ax.grid(axis="y", alpha=0.3)
    save_figure(fig, base_path, dpi=dpi)


def influence_bars(
    labels: Sequence[str],
    cooks_d: Sequence[float],
    threshold: float,
    *,
    base_path: str,
    max_bars: int = 30,
    dpi: int = 300,
) -> None:
    """Cook's distance per language (largest first) with the 4/n line.

    Non-finite distances are plotted as 0.0.
    """

    set_grayscale_style()
    vals = np.asarray(cooks_d, dtype=float)[:max_bars]
    vals = np.where(np.isfinite(vals), vals, 0.0)
    labels = list(labels)[:max_bars]
    idx = np.arange(len(vals))

    fig, ax = plt.subplots(figsize=(max(5.5, 0.25 * len(vals) + 2.0), 4.0))
    colors = ["0.1" if v > threshold else "0.6" for v in vals]
    ax.bar(idx, vals, color=colors, edgecolor="0.25")
    ax.axhline(float(threshold), linestyle="--", color="0.0", linewidth=1.0)
    ax.set_xticks(idx)
    ax.set_xticklabels(labels, rotation=60, ha="right", fontsize=7)
    ax.set_xlabel("Language")
    ax.set_ylabel("Cook's distance")
    ax.grid(axis="y", alpha=0.3)
    save_figure(fig, base_path, dpi=dpi)


def loo_estimates(
    labels: Sequence[str],
    estimates: Sequence[float],
    se: Sequence[float],
    *,
    base_estimate: Optional[float],
    base_path: str,
    dpi: int = 300,
) -> None:
    """Leave-one-out coefficient estimates with +/-1.96 SE bars."""

    set_grayscale_style()
    est = np.asarray(estimates, dtype=float)
    err = 1.96 * np.asarray(se, dtype=float)
    keep = np.isfinite(est)
    est, err = est[keep], err[keep]
    labels = [l for l, k in zip(labels, keep) if k]
    idx = np.arange(len(est))

    fig, ax = plt.subplots(figsize=(5.5, max(4.0, 0.18 * len(est) + 1.0)))
    ax.errorbar(est, idx, xerr=err, fmt="o", markersize=3, color="0.25", ecolor="0.5", elinewidth=1.0)
    if base_estimate is not None and np.isfinite(base_estimate):
        ax.axvline(float(base_estimate), linestyle="--", color="0.0", linewidth=1.0)
    ax.axvline(0.0, color="0.6", linewidth=0.8)
    ax.set_yticks(idx)
    ax.set_yticklabels(labels, fontsize=6)
    ax.set_xlabel("Coefficient estimate (language dropped)")
    ax.grid(axis="x", alpha=0.3)
    save_figure(fig, base_path, dpi=dpi)
