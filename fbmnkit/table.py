"""Layout of the feature table shared by all processing steps.

The table is indexed by feature id (``FT0001``, ``FT0002``, ...) and holds
the xcms-style feature definition columns followed by one intensity column
per sample, named after the raw file.
"""

from __future__ import annotations

import re

import pandas as pd

DEFINITION_COLUMNS = ["mzmed", "mzmin", "mzmax", "rtmed", "rtmin", "rtmax", "npeaks"]

_FEATURE_ID = re.compile(r"^FT(\d+)$")


def make_feature_ids(n: int) -> list[str]:
    """Return ``n`` zero-padded feature ids starting at ``FT0001``."""
    width = max(4, len(str(n)))
    return [f"FT{i:0{width}d}" for i in range(1, n + 1)]


def feature_number(feature_id: str) -> int:
    """
    Return the integer part of a feature id.

    Raises
    ------
    ValueError
        If *feature_id* is not of the form ``FT<digits>``.
    """
    match = _FEATURE_ID.match(str(feature_id))
    if match is None:
        raise ValueError(f"Invalid feature id {feature_id!r}.")
    return int(match.group(1))


def sample_columns(table: pd.DataFrame) -> list[str]:
    """Return the per-sample intensity columns of a feature table."""
    return [c for c in table.columns if c not in DEFINITION_COLUMNS]


def validate_feature_table(table: pd.DataFrame) -> None:
    """
    Check that *table* follows the feature table layout.

    Raises
    ------
    ValueError
        If definition columns are missing or no sample column is present.
    """
    missing = [c for c in DEFINITION_COLUMNS if c not in table.columns]
    if missing:
        raise ValueError(f"Feature table is missing columns: {missing}")
    if not sample_columns(table):
        raise ValueError("Feature table has no sample intensity columns.")
