"""MS2 spectrum extraction, feature linking and consolidation.

Data-dependent MS2 scans are extracted from each run, linked to the
features whose m/z and retention time window contain their precursor, and
reduced to a single spectrum per feature for the MGF export.

Examples
--------
>>> from fbmnkit.processing.ms2 import (
...     extract_ms2_spectra, link_ms2_to_features, consolidate_spectra,
... )
>>> spectra = extract_ms2_spectra(exp, "sample_01.mzML")
>>> linked = link_ms2_to_features(spectra, table)
>>> per_feature = consolidate_spectra(linked)
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import pyopenms as oms

from ..config import MS2Settings

logger = logging.getLogger(__name__)

SPECTRUM_COLUMNS = [
    "sample",
    "scan",
    "native_id",
    "rt",
    "precursor_mz",
    "precursor_intensity",
    "charge",
    "mz",
    "intensity",
    "tic",
]


def extract_ms2_spectra(exp: oms.MSExperiment, sample: str) -> pd.DataFrame:
    """
    Extract every MS2 scan with a precursor from an experiment.

    Parameters
    ----------
    exp : pyopenms.MSExperiment
        Run to read, with aligned retention times if alignment was done.
    sample : str
        Sample name stored in the ``sample`` column.

    Returns
    -------
    pd.DataFrame
        One row per MS2 scan with the columns in ``SPECTRUM_COLUMNS``;
        ``mz`` and ``intensity`` hold numpy arrays. Empty scans are
        skipped.
    """
    rows = []
    for i, spec in enumerate(exp):
        if spec.getMSLevel() != 2:
            continue
        precursors = spec.getPrecursors()
        if len(precursors) == 0:
            continue
        mz, intensity = spec.get_peaks()
        if len(mz) == 0:
            continue
        precursor = precursors[0]
        native_id = spec.getNativeID()
        if isinstance(native_id, bytes):
            native_id = native_id.decode()
        rows.append(
            {
                "sample": sample,
                "scan": i,
                "native_id": native_id,
                "rt": spec.getRT(),
                "precursor_mz": precursor.getMZ(),
                "precursor_intensity": precursor.getIntensity(),
                "charge": precursor.getCharge(),
                "mz": np.asarray(mz, dtype=float),
                "intensity": np.asarray(intensity, dtype=float),
                "tic": float(np.sum(intensity)),
            }
        )
    logger.debug("%s: %d MS2 spectra", sample, len(rows))
    return pd.DataFrame(rows, columns=SPECTRUM_COLUMNS)


def link_ms2_to_features(
    spectra: pd.DataFrame,
    table: pd.DataFrame,
    settings: MS2Settings | None = None,
) -> pd.DataFrame:
    """
    Assign MS2 spectra to features.

    A spectrum is linked to a feature when its precursor m/z lies within
    ``[mzmin - tol, mzmax + tol]`` with ``tol = mz_abs + ppm * mz * 1e-6``
    and its retention time within ``[rtmin, rtmax]`` widened by
    ``rt_tolerance``. A spectrum matching several features is linked to
    each of them; spectra matching none are dropped.

    Parameters
    ----------
    spectra : pd.DataFrame
        Spectra from :func:`extract_ms2_spectra` (possibly concatenated
        over samples).
    table : pd.DataFrame
        Feature table.
    settings : MS2Settings, optional
        Linking tolerances.

    Returns
    -------
    pd.DataFrame
        Linked spectra with an additional ``feature_id`` column.
    """
    if settings is None:
        settings = MS2Settings()
    columns = ["feature_id"] + list(spectra.columns)
    if spectra.empty or table.empty:
        return pd.DataFrame(columns=columns)

    mzmin = table["mzmin"].to_numpy()
    mzmax = table["mzmax"].to_numpy()
    rtmin = table["rtmin"].to_numpy() - settings.rt_tolerance
    rtmax = table["rtmax"].to_numpy() + settings.rt_tolerance
    ids = table.index.to_numpy()

    linked_pos, linked_ids = [], []
    for pos, (pmz, rt) in enumerate(
        zip(spectra["precursor_mz"].to_numpy(), spectra["rt"].to_numpy())
    ):
        tol = settings.mz_abs + settings.ppm * pmz * 1e-6
        in_mz = (mzmin - tol <= pmz) & (pmz <= mzmax + tol)
        hit = in_mz & (rtmin <= rt) & (rt <= rtmax)
        for fid in ids[hit]:
            linked_pos.append(pos)
            linked_ids.append(fid)

    linked = spectra.iloc[linked_pos].reset_index(drop=True)
    linked.insert(0, "feature_id", linked_ids)
    logger.info(
        "Linked %d of %d MS2 spectra to %d features",
        len(set(linked_pos)),
        len(spectra),
        len(set(linked_ids)),
    )
    return linked[columns]


def _relative_filter(
    mz: np.ndarray, intensity: np.ndarray, min_relative_intensity: float
) -> tuple[np.ndarray, np.ndarray]:
    if len(intensity) == 0 or min_relative_intensity <= 0:
        return mz, intensity
    keep = intensity >= min_relative_intensity * intensity.max()
    return mz[keep], intensity[keep]


def merge_spectra(
    spectra: list[tuple[np.ndarray, np.ndarray]],
    ppm: float = 20.0,
    min_fraction: float = 0.5,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Merge several spectra into a consensus spectrum.

    Fragments of all spectra are sorted by m/z and chained into groups
    while consecutive m/z values differ by at most *ppm*. Groups found in
    at least *min_fraction* of the spectra are kept; their m/z is the
    intensity-weighted mean and their intensity the maximum.

    Parameters
    ----------
    spectra : list of (mz, intensity) array pairs
        Spectra to merge.
    ppm : float, default=20.0
        m/z tolerance between consecutive fragments of one group.
    min_fraction : float, default=0.5
        Minimum fraction of spectra a group must appear in.

    Returns
    -------
    mz, intensity : np.ndarray
        Consensus spectrum sorted by m/z.

    Raises
    ------
    ValueError
        If *spectra* is empty.
    """
    if not spectra:
        raise ValueError("spectra must not be empty.")
    if len(spectra) == 1:
        mz, intensity = spectra[0]
        order = np.argsort(mz)
        return np.asarray(mz)[order], np.asarray(intensity)[order]

    mz = np.concatenate([np.asarray(s[0], dtype=float) for s in spectra])
    intensity = np.concatenate([np.asarray(s[1], dtype=float) for s in spectra])
    origin = np.concatenate([np.full(len(s[0]), i) for i, s in enumerate(spectra)])
    if len(mz) == 0:
        return mz, intensity

    order = np.argsort(mz, kind="mergesort")
    mz, intensity, origin = mz[order], intensity[order], origin[order]
    breaks = np.diff(mz) > ppm * mz[1:] * 1e-6
    group = np.concatenate([[0], np.cumsum(breaks)])

    peaks = pd.DataFrame(
        {"group": group, "mz": mz, "intensity": intensity, "origin": origin}
    )
    peaks["weighted"] = peaks["mz"] * peaks["intensity"]
    summary = peaks.groupby("group").agg(
        weighted=("weighted", "sum"),
        total=("intensity", "sum"),
        mz=("mz", "mean"),
        intensity=("intensity", "max"),
        n_spectra=("origin", "nunique"),
    )
    summary = summary[summary["n_spectra"] >= min_fraction * len(spectra) - 1e-9]
    total = summary["total"].to_numpy()
    merged_mz = summary["mz"].to_numpy(dtype=float, copy=True)
    positive = total > 0
    merged_mz[positive] = summary["weighted"].to_numpy()[positive] / total[positive]
    return merged_mz, summary["intensity"].to_numpy(dtype=float)


def consolidate_spectra(
    linked: pd.DataFrame,
    settings: MS2Settings | None = None,
) -> pd.DataFrame:
    """
    Reduce the linked spectra to one spectrum per feature.

    ``method="max_tic"`` keeps the spectrum with the highest total ion
    current; ``method="consensus"`` merges all spectra of the feature with
    :func:`merge_spectra`, taking precursor information from the highest
    TIC spectrum. Fragments below ``min_relative_intensity`` of the base
    peak are then removed.

    Parameters
    ----------
    linked : pd.DataFrame
        Output of :func:`link_ms2_to_features`.
    settings : MS2Settings, optional

    Returns
    -------
    pd.DataFrame
        One row per feature with the linked columns plus ``n_spectra``,
        sorted by feature id. Features left without fragments are dropped.
    """
    if settings is None:
        settings = MS2Settings()
    columns = list(linked.columns) + ["n_spectra"]
    if linked.empty:
        return pd.DataFrame(columns=columns)

    rows = []
    for fid, group in linked.groupby("feature_id", sort=True):
        best = group.loc[group["tic"].idxmax()].to_dict()
        if settings.method == "consensus":
            mz, intensity = merge_spectra(
                list(zip(group["mz"], group["intensity"])),
                ppm=settings.peak_ppm,
                min_fraction=settings.min_peak_fraction,
            )
        else:
            mz, intensity = best["mz"], best["intensity"]
        mz, intensity = _relative_filter(
            np.asarray(mz), np.asarray(intensity), settings.min_relative_intensity
        )
        if len(mz) == 0:
            continue
        best.update(
            {
                "feature_id": fid,
                "mz": mz,
                "intensity": intensity,
                "tic": float(np.sum(intensity)),
                "n_spectra": len(group),
            }
        )
        rows.append(best)

    logger.info(
        "Consolidated spectra of %d features (%s)", len(rows), settings.method
    )
    return pd.DataFrame(rows, columns=columns).reset_index(drop=True)


def keep_features_with_ms2(table: pd.DataFrame, spectra: pd.DataFrame) -> pd.DataFrame:
    """Return the rows of *table* that have at least one MS2 spectrum."""
    if spectra.empty:
        return table.iloc[0:0]
    return table[table.index.isin(spectra["feature_id"].unique())]
