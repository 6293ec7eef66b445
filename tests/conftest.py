"""Shared pytest fixtures for fbmnkit tests."""
from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from fbmnkit.table import make_feature_ids

# (m/z, apex RT in s, apex intensity, fragment m/z list)
COMPOUNDS = [
    (181.0707, 60.0, 2.0e6, [163.0601, 145.0495, 85.0284]),
    (203.0526, 60.0, 8.0e5, [185.0420, 143.0314]),
    (256.2634, 120.0, 1.5e6, [239.2369, 57.0699]),
    (304.1543, 180.0, 3.0e6, [286.1438, 150.0913, 121.0648]),
]


def gaussian(
    rt: np.ndarray, apex: float, height: float, sigma: float = 3.0
) -> np.ndarray:
    return height * np.exp(-0.5 * ((rt - apex) / sigma) ** 2)


def _make_ms1_frame(
    peaks: list[tuple[float, float, float]],
    rt_start: float = 0.0,
    rt_end: float = 240.0,
    step: float = 1.0,
    noise_mz: float | None = 500.0,
) -> pd.DataFrame:
    """
    Build a long MS1 frame (``scan``, ``rt``, ``mz``, ``intensity``).

    Every scan holds one centroid per peak plus an optional constant
    background centroid at *noise_mz* so that no scan is empty.
    """
    rts = np.arange(rt_start, rt_end + step / 2, step)
    rows = []
    for scan, rt in enumerate(rts):
        for mz, apex, height in peaks:
            intensity = float(gaussian(np.array([rt]), apex, height)[0])
            if intensity > 1.0:
                rows.append((scan, rt, mz, intensity))
        if noise_mz is not None:
            rows.append((scan, rt, noise_mz, 100.0))
    return pd.DataFrame(rows, columns=["scan", "rt", "mz", "intensity"])


@pytest.fixture
def make_ms1_frame():
    """Factory for synthetic MS1 frames, see ``_make_ms1_frame``."""
    return _make_ms1_frame


@pytest.fixture
def feature_table() -> pd.DataFrame:
    """
    Feature table with three samples and missing values.

    FT0002 is missing in ``b.mzML``, FT0003 in ``a.mzML`` and ``c.mzML``.
    """
    table = pd.DataFrame(
        {
            "mzmed": [181.0707, 256.2634, 304.1543],
            "mzmin": [181.0700, 256.2625, 304.1535],
            "mzmax": [181.0714, 256.2642, 304.1551],
            "rtmed": [60.0, 120.0, 180.0],
            "rtmin": [52.0, 112.0, 172.0],
            "rtmax": [68.0, 128.0, 188.0],
            "npeaks": [3, 2, 1],
            "a.mzML": [1.0e7, 5.0e6, np.nan],
            "b.mzML": [1.2e7, np.nan, 8.0e6],
            "c.mzML": [0.9e7, 4.0e6, np.nan],
        },
        index=pd.Index(make_feature_ids(3), name="feature_id"),
    )
    return table


@pytest.fixture
def ms1_frames() -> dict[str, pd.DataFrame]:
    """MS1 frames of the samples in ``feature_table``."""
    peaks = [(mz, rt, h) for mz, rt, h, _frags in COMPOUNDS]
    return {
        "a.mzML": _make_ms1_frame(peaks),
        "b.mzML": _make_ms1_frame(peaks[:1] + peaks[3:]),
        "c.mzML": _make_ms1_frame([]),
    }


@pytest.fixture
def ms2_spectra() -> pd.DataFrame:
    """MS2 spectra as produced by ``extract_ms2_spectra`` for two samples."""
    rows = []
    scan = 0
    for sample, scale in (("a.mzML", 1.0), ("b.mzML", 0.5)):
        for mz, rt, _height, fragments in COMPOUNDS:
            frag_mz = np.array(fragments, dtype=float)
            frag_int = scale * np.linspace(1000.0, 200.0, len(fragments))
            rows.append(
                {
                    "sample": sample,
                    "scan": scan,
                    "native_id": f"scan={scan}",
                    "rt": rt + 0.5,
                    "precursor_mz": mz + 0.0005,
                    "precursor_intensity": 1.0e5,
                    "charge": 1,
                    "mz": frag_mz,
                    "intensity": frag_int,
                    "tic": float(frag_int.sum()),
                }
            )
            scan += 1
    # a spectrum that belongs to no feature
    rows.append(
        {
            "sample": "a.mzML",
            "scan": scan,
            "native_id": f"scan={scan}",
            "rt": 230.0,
            "precursor_mz": 999.5,
            "precursor_intensity": 1.0e4,
            "charge": 1,
            "mz": np.array([100.0, 200.0]),
            "intensity": np.array([10.0, 20.0]),
            "tic": 30.0,
        }
    )
    return pd.DataFrame(rows)


def build_experiment(
    compounds=COMPOUNDS,
    rt_shift: float = 0.0,
    scale: float = 1.0,
    rt_end: float = 240.0,
    with_ms2: bool = True,
    baseline: float = 1.0e3,
):
    """
    Build a centroided pyopenms experiment with Gaussian elution profiles.

    Each compound gets a monoisotopic and an M+1 isotope trace on top of
    a constant *baseline*, so every MS1 scan holds every trace, and one
    MS2 scan half a second after its apex.
    """
    oms = pytest.importorskip("pyopenms")

    exp = oms.MSExperiment()
    for rt in np.arange(0.0, rt_end + 0.5, 1.0):
        mzs, intensities = [], []
        for mz, apex, height, _fragments in compounds:
            profile = gaussian(np.array([rt]), apex + rt_shift, scale * height)
            intensity = float(profile[0])
            mzs.extend([mz, mz + 1.00336])
            intensities.extend([intensity + baseline, 0.15 * intensity + baseline])
        order = np.argsort(mzs)
        spec = oms.MSSpectrum()
        spec.setRT(float(rt))
        spec.setMSLevel(1)
        spec.set_peaks(
            (
                np.asarray(mzs, dtype=np.float64)[order],
                np.asarray(intensities, dtype=np.float32)[order],
            )
        )
        exp.addSpectrum(spec)

    if with_ms2:
        for mz, apex, height, fragments in compounds:
            precursor = oms.Precursor()
            precursor.setMZ(mz)
            precursor.setCharge(1)
            precursor.setIntensity(scale * height)
            spec = oms.MSSpectrum()
            spec.setRT(float(apex + rt_shift + 0.5))
            spec.setMSLevel(2)
            spec.setPrecursors([precursor])
            spec.set_peaks(
                (
                    np.asarray(fragments, dtype=np.float64),
                    np.linspace(1.0e4, 2.0e3, len(fragments)).astype(np.float32),
                )
            )
            exp.addSpectrum(spec)

    exp.sortSpectra(True)
    return exp


@pytest.fixture
def experiment_factory():
    """Factory for synthetic experiments, see ``build_experiment``."""
    return build_experiment


@pytest.fixture
def synthetic_experiment():
    """Single synthetic LC-MS/MS run."""
    return build_experiment()


@pytest.fixture
def raw_dir(tmp_path: Path) -> Path:
    """Directory with two synthetic mzML files."""
    oms = pytest.importorskip("pyopenms")
    directory = tmp_path / "raw"
    directory.mkdir()
    for name, shift, scale in (("qc_01.mzML", 0.0, 1.0), ("qc_02.mzML", 1.0, 0.8)):
        exp = build_experiment(rt_shift=shift, scale=scale)
        oms.MzMLFile().store(str(directory / name), exp)
    return directory
