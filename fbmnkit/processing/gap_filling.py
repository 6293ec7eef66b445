"""Recovery of missing feature intensities from the raw MS1 signal.

After correspondence, a feature that was not detected in a sample has no
intensity for it. Gap filling integrates the raw signal of that sample
within the feature's m/z and retention time window, in the same way the
xcms ``fillChromPeaks`` step does with its ``ChromPeakAreaParam``.
"""

from __future__ import annotations

import logging
import warnings
from typing import Mapping

import numpy as np
import pandas as pd
from scipy.integrate import trapezoid

from ..config import GapFillingSettings
from ..table import sample_columns, validate_feature_table

logger = logging.getLogger(__name__)


def integrate_region(
    ms1: pd.DataFrame,
    mz_min: float,
    mz_max: float,
    rt_min: float,
    rt_max: float,
) -> float:
    """
    Integrate MS1 signal inside an m/z x RT window.

    Per scan the most intense centroid within ``[mz_min, mz_max]`` is
    taken; the resulting chromatogram is integrated over retention time
    with the trapezoid rule. Scans of the window without signal count as
    zero intensity.

    Parameters
    ----------
    ms1 : pd.DataFrame
        Long MS1 frame with ``scan``, ``rt``, ``mz`` and ``intensity``.
    mz_min, mz_max, rt_min, rt_max : float
        Window bounds (inclusive).

    Returns
    -------
    float
        Integrated area, NaN when the window holds no signal.
    """
    in_rt = ms1["rt"].between(rt_min, rt_max)
    window = ms1[in_rt & ms1["mz"].between(mz_min, mz_max)]
    if window.empty or window["intensity"].max() <= 0:
        return np.nan

    scans = ms1.loc[in_rt, ["scan", "rt"]].drop_duplicates("scan")
    apex = window.groupby("scan")["intensity"].max()
    chrom = scans.set_index("scan")["rt"].to_frame()
    chrom["intensity"] = apex.reindex(chrom.index).fillna(0.0)
    chrom = chrom.sort_values("rt")

    if len(chrom) == 1:
        return float(chrom["intensity"].iloc[0])
    return float(trapezoid(chrom["intensity"].to_numpy(), chrom["rt"].to_numpy()))


def fill_gaps(
    table: pd.DataFrame,
    ms1_frames: Mapping[str, pd.DataFrame],
    settings: GapFillingSettings | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Fill missing intensities of a feature table.

    Parameters
    ----------
    table : pd.DataFrame
        Feature table with NaN for undetected features.
    ms1_frames : mapping of str to pd.DataFrame
        Sample column -> MS1 frame (see ``experiment_to_frame``) with
        aligned retention times.
    settings : GapFillingSettings, optional
        Window tolerances.

    Returns
    -------
    filled : pd.DataFrame
        Copy of *table* with recovered intensities. Cells without any
        signal stay NaN.
    mask : pd.DataFrame
        Boolean frame (features x samples), True where a value was filled.

    Examples
    --------
    >>> filled, mask = fill_gaps(table, {"a.mzML": ms1_a, "b.mzML": ms1_b})
    >>> mask.sum()
    """
    if settings is None:
        settings = GapFillingSettings()
    validate_feature_table(table)

    filled = table.copy()
    samples = sample_columns(table)
    mask = pd.DataFrame(False, index=table.index, columns=samples)

    for sample in samples:
        missing = table.index[table[sample].isna()]
        if len(missing) == 0:
            continue
        if sample not in ms1_frames:
            warnings.warn(
                f"No MS1 data for sample '{sample}'; "
                f"{len(missing)} gaps left unfilled.",
                UserWarning,
                stacklevel=2,
            )
            continue

        ms1 = ms1_frames[sample]
        n_filled = 0
        for fid in missing:
            row = table.loc[fid]
            ppm_lo = row["mzmin"] * settings.ppm * 1e-6
            ppm_hi = row["mzmax"] * settings.ppm * 1e-6
            area = integrate_region(
                ms1,
                row["mzmin"] - ppm_lo - settings.expand_mz,
                row["mzmax"] + ppm_hi + settings.expand_mz,
                row["rtmin"] - settings.expand_rt,
                row["rtmax"] + settings.expand_rt,
            )
            if not np.isnan(area):
                filled.loc[fid, sample] = area
                mask.loc[fid, sample] = True
                n_filled += 1
        logger.info("%s: filled %d of %d gaps", sample, n_filled, len(missing))

    return filled, mask
