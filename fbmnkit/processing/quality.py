"""Quick quality overview of raw LC-MS/MS runs."""

from __future__ import annotations

from dataclasses import asdict, dataclass

import numpy as np
import pyopenms as oms


@dataclass
class ExperimentSummary:
    """
    Summary of one raw LC-MS/MS run.

    Attributes
    ----------
    n_ms1, n_ms2 : int
        Number of MS1 and MS2 scans.
    rt_min, rt_max : float
        Retention time range in seconds (NaN for an empty run).
    total_ion_current : float
        Sum of all MS1 intensities.
    median_ms1_peaks : float
        Median number of centroids per MS1 scan.
    n_precursors : int
        Number of MS2 scans carrying precursor information.
    """

    n_ms1: int
    n_ms2: int
    rt_min: float
    rt_max: float
    total_ion_current: float
    median_ms1_peaks: float
    n_precursors: int

    def to_dict(self) -> dict:
        return asdict(self)


def summarize_experiment(exp: oms.MSExperiment) -> ExperimentSummary:
    """
    Summarize scan counts, RT range and signal of an experiment.

    Parameters
    ----------
    exp : pyopenms.MSExperiment
        Loaded run.

    Returns
    -------
    ExperimentSummary

    Examples
    --------
    >>> from fbmnkit.io import load_experiment
    >>> from fbmnkit.processing.quality import summarize_experiment
    >>> summarize_experiment(load_experiment("sample_01.mzML")).n_ms2
    """
    rts = []
    ms1_peaks = []
    tic = 0.0
    n_ms2 = 0
    n_precursors = 0
    for spec in exp:
        rts.append(spec.getRT())
        level = spec.getMSLevel()
        if level == 1:
            _mz, intensity = spec.get_peaks()
            ms1_peaks.append(len(intensity))
            tic += float(np.sum(intensity))
        elif level == 2:
            n_ms2 += 1
            if len(spec.getPrecursors()) > 0:
                n_precursors += 1

    return ExperimentSummary(
        n_ms1=len(ms1_peaks),
        n_ms2=n_ms2,
        rt_min=float(min(rts)) if rts else np.nan,
        rt_max=float(max(rts)) if rts else np.nan,
        total_ion_current=tic,
        median_ms1_peaks=float(np.median(ms1_peaks)) if ms1_peaks else 0.0,
        n_precursors=n_precursors,
    )
