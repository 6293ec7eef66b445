"""Diagnostic plots for the preprocessing workflow."""

from __future__ import annotations

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd


def plot_rt_adjustment(
    alignment: pd.DataFrame,
    ax=None,
    title: str | None = "Retention time adjustment",
    show: bool = True,
):
    """
    Plot the retention time correction of every aligned sample.

    The difference ``rt_adjusted - rt_raw`` is drawn against the adjusted
    retention time, one line per sample, as in the xcms
    ``plotAdjustedRtime`` view. The reference sample has no data points
    and is not drawn.

    Parameters
    ----------
    alignment : pd.DataFrame
        Alignment data points with ``sample``, ``rt_raw`` and
        ``rt_adjusted`` columns (see ``transformation_frame``).
    ax : matplotlib.axes.Axes, optional
        Axes to draw on. A new figure is created when omitted.
    title : str or None
        Axes title.
    show : bool
        If True, calls plt.show() at the end.

    Returns
    -------
    fig, ax : matplotlib.figure.Figure, matplotlib.axes.Axes
    """
    missing = {"sample", "rt_raw", "rt_adjusted"} - set(alignment.columns)
    if missing:
        raise ValueError(f"Alignment frame is missing columns: {sorted(missing)}")

    if ax is None:
        fig, ax = plt.subplots(figsize=(7.0, 4.0), constrained_layout=True)
    else:
        fig = ax.figure

    for sample, points in alignment.groupby("sample", sort=True):
        points = points.sort_values("rt_adjusted")
        ax.plot(
            points["rt_adjusted"],
            points["rt_adjusted"] - points["rt_raw"],
            marker=".",
            linewidth=1,
            label=sample,
        )
    ax.axhline(0.0, color="grey", linewidth=0.8, linestyle="--")
    ax.set_xlabel("Adjusted retention time (s)")
    ax.set_ylabel("Adjusted - raw RT (s)")
    if alignment["sample"].nunique() > 0:
        ax.legend(fontsize="small", frameon=False)
    if title:
        ax.set_title(title)

    if show:
        plt.show()
    return fig, ax


def plot_ms2_spectrum(
    spectra: pd.DataFrame,
    feature_id: str,
    ax=None,
    show: bool = True,
):
    """
    Draw the consolidated MS2 spectrum of one feature as a stick plot.

    Intensities are scaled to the base peak (100 %).

    Raises
    ------
    KeyError
        If *feature_id* has no spectrum.
    """
    rows = spectra[spectra["feature_id"] == feature_id]
    if rows.empty:
        raise KeyError(f"No MS2 spectrum for feature '{feature_id}'.")
    row = rows.iloc[0]
    mz = np.asarray(row["mz"], dtype=float)
    intensity = np.asarray(row["intensity"], dtype=float)
    relative = 100.0 * intensity / intensity.max() if len(intensity) else intensity

    if ax is None:
        fig, ax = plt.subplots(figsize=(7.0, 3.5), constrained_layout=True)
    else:
        fig = ax.figure

    ax.vlines(mz, 0, relative, color="black", linewidth=1)
    ax.set_ylim(0, 105)
    ax.set_xlabel("m/z")
    ax.set_ylabel("Relative intensity (%)")
    ax.set_title(
        f"{feature_id}  precursor m/z {row['precursor_mz']:.4f}  RT {row['rt']:.1f} s"
    )

    if show:
        plt.show()
    return fig, ax
