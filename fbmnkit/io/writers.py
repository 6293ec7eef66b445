"""Writers for the files consumed by GNPS feature-based molecular networking.

Two table flavours are supported. ``"xcms"`` writes the tab-separated
feature definitions plus intensities, RT in seconds, that GNPS accepts as
XCMS input. ``"mzmine"`` writes the MZmine-style CSV with ``row ID``,
``row m/z``, ``row retention time`` (minutes) and ``<file> Peak area``
columns. The MGF ``FEATURE_ID`` always matches the id column of the table
written with the same style.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd
from pyteomics import mgf

from ..table import DEFINITION_COLUMNS, feature_number, sample_columns

logger = logging.getLogger(__name__)

EDGE_COLUMNS = ["ID1", "ID2", "EdgeType", "Score", "Annotation"]


def _check_style(style: str) -> None:
    valid = ("xcms", "mzmine")
    if style not in valid:
        raise ValueError(f"style must be one of {valid}, got {style!r}.")


def format_feature_id(feature_id: str, style: str = "xcms") -> str:
    """Return the id written for *feature_id* in tables and MGF files."""
    _check_style(style)
    if style == "mzmine":
        return str(feature_number(feature_id))
    return feature_id


def write_feature_table(
    table: pd.DataFrame,
    path: str | Path,
    style: str = "xcms",
) -> pd.DataFrame:
    """
    Write the feature quantification table.

    Parameters
    ----------
    table : pd.DataFrame
        Feature table indexed by feature id, with definition columns
        followed by one intensity column per sample.
    path : str or Path
        Output file.
    style : str, default="xcms"
        ``"xcms"`` or ``"mzmine"``.

    Returns
    -------
    pd.DataFrame
        The table exactly as written.
    """
    _check_style(style)
    samples = sample_columns(table)
    intensities = table[samples].fillna(0.0)

    if style == "xcms":
        out = pd.concat([table[DEFINITION_COLUMNS], intensities], axis=1)
        out.insert(0, "Row.names", out.index)
        out.to_csv(path, sep="\t", index=False)
    else:
        out = pd.DataFrame(
            {
                "row ID": [feature_number(fid) for fid in table.index],
                "row m/z": table["mzmed"].to_numpy(),
                "row retention time": table["rtmed"].to_numpy() / 60.0,
            }
        )
        for sample in samples:
            out[f"{sample} Peak area"] = intensities[sample].to_numpy()
        out.to_csv(path, index=False)

    logger.info("Wrote %d features to %s", len(out), path)
    return out


def write_mgf(
    spectra: pd.DataFrame,
    path: str | Path,
    style: str = "xcms",
    polarity: str = "positive",
) -> int:
    """
    Write one MS2 spectrum per feature to an MGF file.

    Parameters
    ----------
    spectra : pd.DataFrame
        Consolidated spectra with ``feature_id``, ``precursor_mz``, ``rt``,
        ``charge``, ``mz`` and ``intensity`` columns.
    path : str or Path
        Output file.
    style : str, default="xcms"
        Id flavour, see :func:`format_feature_id`.
    polarity : str, default="positive"
        Sign used in the ``CHARGE`` field.

    Returns
    -------
    int
        Number of spectra written.
    """
    _check_style(style)
    sign = "-" if polarity == "negative" else "+"

    entries = []
    for row in spectra.sort_values(
        "feature_id", key=lambda s: s.map(feature_number)
    ).itertuples(index=False):
        charge = int(row.charge) if row.charge and row.charge > 0 else 1
        entries.append(
            {
                "params": {
                    "FEATURE_ID": format_feature_id(row.feature_id, style),
                    "PEPMASS": float(row.precursor_mz),
                    "SCANS": feature_number(row.feature_id),
                    "RTINSECONDS": round(float(row.rt), 3),
                    "CHARGE": f"{charge}{sign}",
                    "MSLEVEL": 2,
                },
                "m/z array": np.asarray(row.mz, dtype=float),
                "intensity array": np.asarray(row.intensity, dtype=float),
            }
        )

    mgf.write(entries, str(path))
    logger.info("Wrote %d MS2 spectra to %s", len(entries), path)
    return len(entries)


def write_edge_table(
    edges: pd.DataFrame,
    path: str | Path,
    style: str = "xcms",
) -> pd.DataFrame:
    """
    Write the ion identity (supplementary pairs) edge table.

    Parameters
    ----------
    edges : pd.DataFrame
        Edges with ``ID1``, ``ID2``, ``EdgeType``, ``Score`` and
        ``Annotation`` columns, ids being feature ids.
    path : str or Path
        Output CSV file.
    style : str, default="xcms"
        Id flavour, see :func:`format_feature_id`.
    """
    missing = set(EDGE_COLUMNS) - set(edges.columns)
    if missing:
        raise ValueError(f"Edge table is missing columns: {sorted(missing)}")
    out = edges[EDGE_COLUMNS].copy()
    out["ID1"] = out["ID1"].map(lambda fid: format_feature_id(fid, style))
    out["ID2"] = out["ID2"].map(lambda fid: format_feature_id(fid, style))
    out.to_csv(path, index=False)
    return out


def write_sample_metadata(
    samples: pd.DataFrame,
    path: str | Path,
) -> pd.DataFrame:
    """
    Write the GNPS sample metadata table.

    Every column other than ``filename`` is written as
    ``ATTRIBUTE_<column>`` so that GNPS can use it for grouping.

    Parameters
    ----------
    samples : pd.DataFrame
        Sample sheet indexed by file name.
    path : str or Path
        Output TSV file.
    """
    out = samples.copy()
    out.index.name = "filename"
    out = out.reset_index()
    out.columns = [
        c if c == "filename" or c.startswith("ATTRIBUTE_") else f"ATTRIBUTE_{c}"
        for c in out.columns
    ]
    out.to_csv(path, sep="\t", index=False)
    return out
