"""File reading utilities for LC-MS/MS raw data and sample sheets."""

from __future__ import annotations

import csv
import itertools
from pathlib import Path

import numpy as np
import pandas as pd
import pyopenms as oms

RAW_EXTENSIONS = (".mzML", ".mzXML")


def find_raw_files(
    directory: str | Path,
    extensions: tuple[str, ...] = RAW_EXTENSIONS,
) -> list[Path]:
    """
    List raw data files in a directory.

    Parameters
    ----------
    directory : str or Path
        Directory to search (not recursive).
    extensions : tuple of str, default=(".mzML", ".mzXML")
        Accepted file suffixes, compared case-insensitively.

    Returns
    -------
    list of Path
        Matching files sorted by name.

    Raises
    ------
    FileNotFoundError
        If *directory* does not exist.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Raw data directory not found: {directory}")
    wanted = {ext.lower() for ext in extensions}
    return sorted(
        p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in wanted
    )


def load_experiment(path: str | Path) -> oms.MSExperiment:
    """
    Load an mzML or mzXML file into an ``MSExperiment``.

    Spectra are sorted by retention time.

    Parameters
    ----------
    path : str or Path
        Path to the raw data file.

    Returns
    -------
    pyopenms.MSExperiment
        Loaded experiment.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the suffix is neither ``.mzML`` nor ``.mzXML``.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Raw data file not found: {path}")

    suffix = path.suffix.lower()
    exp = oms.MSExperiment()
    if suffix == ".mzml":
        oms.MzMLFile().load(str(path), exp)
    elif suffix == ".mzxml":
        oms.MzXMLFile().load(str(path), exp)
    else:
        raise ValueError(
            f"Unsupported raw data format {path.suffix!r}. Use one of {RAW_EXTENSIONS}."
        )
    exp.sortSpectra(True)
    return exp


def experiment_to_frame(exp: oms.MSExperiment, ms_level: int = 1) -> pd.DataFrame:
    """
    Flatten the centroids of one MS level into a long DataFrame.

    Parameters
    ----------
    exp : pyopenms.MSExperiment
        Experiment to flatten.
    ms_level : int, default=1
        MS level to keep.

    Returns
    -------
    pd.DataFrame
        Columns ``scan`` (spectrum index), ``rt`` (seconds), ``mz`` and
        ``intensity``; one row per centroid.
    """
    scans, rts, mzs, intensities = [], [], [], []
    for i, spec in enumerate(exp):
        if spec.getMSLevel() != ms_level:
            continue
        mz, intensity = spec.get_peaks()
        if len(mz) == 0:
            continue
        scans.append(np.full(len(mz), i, dtype=int))
        rts.append(np.full(len(mz), spec.getRT(), dtype=float))
        mzs.append(np.asarray(mz, dtype=float))
        intensities.append(np.asarray(intensity, dtype=float))

    if not scans:
        return pd.DataFrame(
            {
                "scan": pd.Series(dtype=int),
                "rt": pd.Series(dtype=float),
                "mz": pd.Series(dtype=float),
                "intensity": pd.Series(dtype=float),
            }
        )

    return pd.DataFrame(
        {
            "scan": np.concatenate(scans),
            "rt": np.concatenate(rts),
            "mz": np.concatenate(mzs),
            "intensity": np.concatenate(intensities),
        }
    )


def sniff_delimiter(
    path: str | Path, candidates: tuple[str, ...] = ("\t", ",", ";")
) -> str:
    """
    Detect the delimiter of a sample sheet.

    Lines starting with ``#`` are ignored. The candidate that splits the
    header into a ``filename`` column wins; otherwise :class:`csv.Sniffer`
    decides from the first rows.

    Raises
    ------
    csv.Error
        If the sheet has no header line or no candidate fits.
    """
    with open(path, newline="") as f:
        rows = [
            line
            for line in itertools.islice(f, 100)
            if line.strip() and not line.startswith("#")
        ][:10]
    if not rows:
        raise csv.Error(f"No header line in {path}")

    header = rows[0].rstrip("\r\n")
    for delim in candidates:
        if "filename" in [col.strip() for col in header.split(delim)]:
            return delim
    dialect = csv.Sniffer().sniff("".join(rows), delimiters="".join(candidates))
    return dialect.delimiter


def read_sample_metadata(path: str | Path) -> pd.DataFrame:
    """
    Read a sample sheet describing the raw files.

    The sheet must contain a ``filename`` column matching the raw file
    names (with extension). An optional ``sample_group`` column defines
    the groups used when filtering features by occurrence.

    Parameters
    ----------
    path : str or Path
        Tab, comma or semicolon separated file.

    Returns
    -------
    pd.DataFrame
        Sample sheet indexed by ``filename``.

    Raises
    ------
    ValueError
        If the ``filename`` column is missing or contains duplicates.

    Examples
    --------
    >>> from fbmnkit.io import read_sample_metadata
    >>> meta = read_sample_metadata("samples.tsv")
    >>> meta["sample_group"].value_counts()
    """
    try:
        delim = sniff_delimiter(path)
    except csv.Error:
        delim = "\t"

    df = pd.read_csv(path, sep=delim, comment="#", dtype={"filename": str})
    df.columns = [c.strip() for c in df.columns]
    if "filename" not in df.columns:
        raise ValueError(
            f"Sample metadata {path} has no 'filename' column. "
            f"Found: {list(df.columns)}"
        )
    if df["filename"].duplicated().any():
        dupes = sorted(df.loc[df["filename"].duplicated(), "filename"].unique())
        raise ValueError(f"Duplicated file names in sample metadata: {dupes}")
    return df.set_index("filename")
