"""Composable row filters for feature tables.

Filters can be combined with ``&`` (and), ``|`` (or) and ``~`` (invert)
to select features before export or inspection.

Examples
--------
>>> from fbmnkit.filters import MzRangeFilter, RtRangeFilter, apply_filter
>>> f = MzRangeFilter(100, 1000) & RtRangeFilter(30, 900)
>>> subset = apply_filter(table, f)

>>> f = ~FeatureIdFilter(["FT0001", "FT0002"])
>>> subset = apply_filter(table, f)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np
import pandas as pd

from .table import sample_columns


class FeatureFilter(ABC):
    """Base filter with operator overloading.

    Subclasses implement :meth:`mask`, which receives the whole feature
    table and returns a boolean Series aligned on its index (``True`` to
    keep the feature).
    """

    @abstractmethod
    def mask(self, table: pd.DataFrame) -> pd.Series:
        """Return a boolean Series marking the features to keep."""

    def __call__(self, table: pd.DataFrame) -> pd.Series:
        return self.mask(table)

    def __and__(self, other: FeatureFilter) -> _AndFilter:
        return _AndFilter(self, other)

    def __or__(self, other: FeatureFilter) -> _OrFilter:
        return _OrFilter(self, other)

    def __invert__(self) -> _NotFilter:
        return _NotFilter(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class _AndFilter(FeatureFilter):
    def __init__(self, left: FeatureFilter, right: FeatureFilter) -> None:
        self.left = left
        self.right = right

    def mask(self, table: pd.DataFrame) -> pd.Series:
        return self.left.mask(table) & self.right.mask(table)

    def __repr__(self) -> str:
        return f"({self.left!r} & {self.right!r})"


class _OrFilter(FeatureFilter):
    def __init__(self, left: FeatureFilter, right: FeatureFilter) -> None:
        self.left = left
        self.right = right

    def mask(self, table: pd.DataFrame) -> pd.Series:
        return self.left.mask(table) | self.right.mask(table)

    def __repr__(self) -> str:
        return f"({self.left!r} | {self.right!r})"


class _NotFilter(FeatureFilter):
    def __init__(self, inner: FeatureFilter) -> None:
        self.inner = inner

    def mask(self, table: pd.DataFrame) -> pd.Series:
        return ~self.inner.mask(table)

    def __repr__(self) -> str:
        return f"(~{self.inner!r})"


class _RangeFilter(FeatureFilter):
    column = ""

    def __init__(self, low: float | None = None, high: float | None = None) -> None:
        if low is not None and high is not None and low > high:
            raise ValueError(
                f"Lower bound ({low}) must not exceed upper bound ({high})."
            )
        self.low = low
        self.high = high

    def mask(self, table: pd.DataFrame) -> pd.Series:
        values = table[self.column]
        keep = pd.Series(True, index=table.index)
        if self.low is not None:
            keep &= values >= self.low
        if self.high is not None:
            keep &= values <= self.high
        return keep

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.low}, {self.high})"


class MzRangeFilter(_RangeFilter):
    """Keep features whose median m/z lies within ``[low, high]``.

    Either bound may be ``None`` to leave that side open.
    """

    column = "mzmed"


class RtRangeFilter(_RangeFilter):
    """Keep features whose median retention time (s) lies within ``[low, high]``."""

    column = "rtmed"


class IntensityFilter(FeatureFilter):
    """Filter by feature intensity across samples.

    Parameters
    ----------
    min_intensity : float
        Threshold the aggregated intensity must reach.
    how : str, default="max"
        Aggregation over samples: ``"max"``, ``"mean"`` or ``"median"``.
        Missing values are ignored.
    samples : list of str, optional
        Sample columns to consider. All sample columns when omitted.
    """

    def __init__(
        self,
        min_intensity: float,
        how: str = "max",
        samples: Sequence[str] | None = None,
    ) -> None:
        if how not in ("max", "mean", "median"):
            raise ValueError(f"how must be 'max', 'mean' or 'median', got {how!r}.")
        self.min_intensity = min_intensity
        self.how = how
        self.samples = list(samples) if samples is not None else None

    def mask(self, table: pd.DataFrame) -> pd.Series:
        cols = self.samples if self.samples is not None else sample_columns(table)
        values = getattr(table[cols], self.how)(axis=1)
        return values.fillna(-np.inf) >= self.min_intensity

    def __repr__(self) -> str:
        return f"IntensityFilter({self.min_intensity}, how={self.how!r})"


class OccurrenceFilter(FeatureFilter):
    """Keep features with a positive intensity in at least ``min_samples`` samples.

    Parameters
    ----------
    min_samples : int, default=1
    samples : list of str, optional
        Sample columns to count. All sample columns when omitted.
    """

    def __init__(
        self, min_samples: int = 1, samples: Sequence[str] | None = None
    ) -> None:
        if min_samples < 1:
            raise ValueError(f"min_samples must be >= 1, got {min_samples}.")
        self.min_samples = min_samples
        self.samples = list(samples) if samples is not None else None

    def mask(self, table: pd.DataFrame) -> pd.Series:
        cols = self.samples if self.samples is not None else sample_columns(table)
        detected = table[cols].fillna(0) > 0
        return detected.sum(axis=1) >= self.min_samples

    def __repr__(self) -> str:
        return f"OccurrenceFilter(min_samples={self.min_samples})"


class FeatureIdFilter(FeatureFilter):
    """Keep the features with the given id(s)."""

    def __init__(self, ids: str | Sequence[str]) -> None:
        self._ids = {ids} if isinstance(ids, str) else set(ids)

    def mask(self, table: pd.DataFrame) -> pd.Series:
        return pd.Series(table.index.isin(self._ids), index=table.index)

    def __repr__(self) -> str:
        ids = sorted(self._ids)
        if len(ids) == 1:
            return f"FeatureIdFilter({ids[0]!r})"
        return f"FeatureIdFilter({ids!r})"


def apply_filter(table: pd.DataFrame, feature_filter: FeatureFilter) -> pd.DataFrame:
    """
    Return the rows of *table* kept by *feature_filter*.

    Raises
    ------
    ValueError
        If the filter mask is not aligned with the table index.
    """
    keep = feature_filter.mask(table)
    if not keep.index.equals(table.index):
        raise ValueError(
            f"{feature_filter!r} returned a mask not aligned with the table."
        )
    return table[keep.to_numpy(dtype=bool)]
