"""Chromatographic feature detection.

Wraps the OpenMS metabolomics feature finder, the counterpart of the
centWave detector of xcms: centroids are chained into mass traces, the
traces are split into elution peaks and co-eluting isotope traces are
assembled into features.

Examples
--------
>>> from fbmnkit.io import load_experiment
>>> from fbmnkit.processing.peak_picking import detect_features, feature_map_to_frame
>>> exp = load_experiment("sample_01.mzML")
>>> fmap = detect_features(exp)
>>> feature_map_to_frame(fmap).head()
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import pyopenms as oms

from ..config import PeakPickingSettings

logger = logging.getLogger(__name__)

FEATURE_COLUMNS = [
    "mz",
    "rt",
    "intensity",
    "charge",
    "mz_min",
    "mz_max",
    "rt_min",
    "rt_max",
    "fwhm",
    "n_isotopes",
    "adduct",
    "adduct_group",
]


def _bool(value: bool) -> str:
    return "true" if value else "false"


def _set_params(algorithm, values: dict) -> None:
    params = algorithm.getDefaults()
    for key, value in values.items():
        params.setValue(key, value)
    algorithm.setParameters(params)


def detect_features(
    exp: oms.MSExperiment,
    settings: PeakPickingSettings | None = None,
    sample_name: str | None = None,
) -> oms.FeatureMap:
    """
    Detect chromatographic features in a centroided experiment.

    Parameters
    ----------
    exp : pyopenms.MSExperiment
        Centroided LC-MS run.
    settings : PeakPickingSettings, optional
        Detection parameters. Defaults are used when omitted.
    sample_name : str, optional
        Stored as the primary MS run path of the returned map.

    Returns
    -------
    pyopenms.FeatureMap
        Detected features with unique ids and convex hulls.
    """
    if settings is None:
        settings = PeakPickingSettings()

    mtd = oms.MassTraceDetection()
    _set_params(
        mtd,
        {
            "mass_error_ppm": float(settings.mass_error_ppm),
            "noise_threshold_int": float(settings.noise_threshold_int),
            "chrom_peak_snr": float(settings.chrom_peak_snr),
            "min_trace_length": float(settings.min_trace_length),
            "max_trace_length": float(settings.max_trace_length),
        },
    )
    mass_traces = []
    mtd.run(exp, mass_traces, 0)

    epd = oms.ElutionPeakDetection()
    _set_params(
        epd,
        {
            "width_filtering": settings.width_filtering,
            "min_fwhm": float(settings.min_fwhm),
            "max_fwhm": float(settings.max_fwhm),
            "chrom_fwhm": float(settings.chrom_fwhm),
            "chrom_peak_snr": float(settings.chrom_peak_snr),
        },
    )
    split_traces = []
    epd.detectPeaks(mass_traces, split_traces)

    ffm = oms.FeatureFindingMetabo()
    _set_params(
        ffm,
        {
            "remove_single_traces": _bool(settings.remove_single_traces),
            "isotope_filtering_model": settings.isotope_filtering_model,
            "charge_lower_bound": int(settings.charge_lower_bound),
            "charge_upper_bound": int(settings.charge_upper_bound),
            "chrom_fwhm": float(settings.chrom_fwhm),
            "report_convex_hulls": "true",
        },
    )
    fmap = oms.FeatureMap()
    chromatograms = []
    ffm.run(split_traces, fmap, chromatograms)
    fmap.setUniqueIds()
    if sample_name is not None:
        fmap.setPrimaryMSRunPath([sample_name.encode()])

    logger.info(
        "%s: %d mass traces, %d elution peaks, %d features",
        sample_name or "experiment",
        len(mass_traces),
        len(split_traces),
        fmap.size(),
    )
    return fmap


def _meta(feature, key: str, default=None):
    if feature.metaValueExists(key):
        value = feature.getMetaValue(key)
        if isinstance(value, bytes):
            return value.decode()
        return value
    return default


def feature_map_to_frame(fmap: oms.FeatureMap) -> pd.DataFrame:
    """
    Convert a feature map to a DataFrame indexed by feature unique id.

    The m/z and RT bounds come from the convex hull of the monoisotopic
    trace. Features without hulls fall back to ``rt ± fwhm / 2`` and the
    feature m/z.

    Parameters
    ----------
    fmap : pyopenms.FeatureMap
        Feature map from :func:`detect_features`, optionally decharged.

    Returns
    -------
    pd.DataFrame
        Columns listed in ``FEATURE_COLUMNS``. ``adduct`` and
        ``adduct_group`` are empty strings when no adduct annotation is
        present.
    """
    rows = []
    ids = []
    for feature in fmap:
        mz = feature.getMZ()
        rt = feature.getRT()
        fwhm = float(_meta(feature, "FWHM", 0.0) or 0.0)

        hulls = feature.getConvexHulls()
        points = hulls[0].getHullPoints() if len(hulls) > 0 else np.empty((0, 2))
        if len(points) > 0:
            rt_min, rt_max = float(points[:, 0].min()), float(points[:, 0].max())
            mz_min, mz_max = float(points[:, 1].min()), float(points[:, 1].max())
        else:
            rt_min, rt_max = rt - fwhm / 2, rt + fwhm / 2
            mz_min = mz_max = mz

        ids.append(feature.getUniqueId())
        rows.append(
            {
                "mz": mz,
                "rt": rt,
                "intensity": feature.getIntensity(),
                "charge": feature.getCharge(),
                "mz_min": mz_min,
                "mz_max": mz_max,
                "rt_min": rt_min,
                "rt_max": rt_max,
                "fwhm": fwhm,
                "n_isotopes": int(_meta(feature, "num_of_masstraces", len(hulls)) or 1),
                "adduct": str(_meta(feature, "dc_charge_adducts", "")),
                "adduct_group": str(_meta(feature, "Group", "")),
            }
        )

    return pd.DataFrame(
        rows, index=pd.Index(ids, name="unique_id"), columns=FEATURE_COLUMNS
    )
