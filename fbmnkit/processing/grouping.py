"""Correspondence of features across samples.

Features of all samples are linked with the OpenMS KD-tree grouping
algorithm into consensus features, which are then flattened into the
xcms-style feature table used by the rest of the workflow.
"""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

import numpy as np
import pandas as pd
import pyopenms as oms

from ..config import GroupingSettings
from ..table import DEFINITION_COLUMNS, make_feature_ids, sample_columns

logger = logging.getLogger(__name__)


def group_features(
    feature_maps: Sequence[oms.FeatureMap],
    sample_names: Sequence[str],
    settings: GroupingSettings | None = None,
) -> oms.ConsensusMap:
    """
    Link features of several samples into consensus features.

    Parameters
    ----------
    feature_maps : sequence of pyopenms.FeatureMap
        Aligned feature maps, one per sample.
    sample_names : sequence of str
        Sample names in the same order; stored as column headers.
    settings : GroupingSettings, optional
        Linking tolerances.

    Returns
    -------
    pyopenms.ConsensusMap
        Consensus map whose handles refer to map indices in the order of
        *feature_maps*.

    Raises
    ------
    ValueError
        If the number of names does not match or no map holds a feature.
    """
    if settings is None:
        settings = GroupingSettings()
    if len(feature_maps) != len(sample_names):
        raise ValueError(
            f"Got {len(feature_maps)} feature maps but {len(sample_names)} names."
        )
    if all(fmap.size() == 0 for fmap in feature_maps):
        raise ValueError("No features detected in any sample.")

    consensus_map = oms.ConsensusMap()
    headers = consensus_map.getColumnHeaders()
    for i, (fmap, name) in enumerate(zip(feature_maps, sample_names)):
        header = headers.get(i, oms.ColumnHeader())
        header.filename = name
        header.size = fmap.size()
        header.unique_id = fmap.getUniqueId()
        headers[i] = header
    consensus_map.setColumnHeaders(headers)

    grouper = oms.FeatureGroupingAlgorithmKD()
    params = grouper.getDefaults()
    params.setValue("warp:enabled", "true" if settings.warp else "false")
    params.setValue("link:rt_tol", float(settings.rt_tol))
    params.setValue("link:mz_tol", float(settings.mz_tol))
    params.setValue("mz_unit", settings.mz_unit)
    grouper.setParameters(params)

    grouper.group(list(feature_maps), consensus_map)
    consensus_map.setColumnHeaders(headers)
    consensus_map.setUniqueIds()
    logger.info(
        "Grouped features of %d samples into %d consensus features",
        len(feature_maps),
        consensus_map.size(),
    )
    return consensus_map


def consensus_members(consensus_map: oms.ConsensusMap) -> list[list[tuple[int, int]]]:
    """Return ``(map_index, unique_id)`` pairs of every consensus feature."""
    return [
        [(handle.getMapIndex(), handle.getUniqueId()) for handle in cf.getFeatureList()]
        for cf in consensus_map
    ]


def build_feature_table(
    members: Sequence[Sequence[tuple[int, int]]],
    feature_frames: Sequence[pd.DataFrame],
    sample_names: Sequence[str],
) -> tuple[pd.DataFrame, list[list[tuple[int, int]]]]:
    """
    Build the feature table from grouped per-sample features.

    Definition columns summarise the member features: ``mzmed``/``rtmed``
    are medians, ``mzmin``/``rtmin`` minima and ``mzmax``/``rtmax`` maxima
    of the member bounds, ``npeaks`` the number of members.

    Parameters
    ----------
    members : sequence of sequence of (int, int)
        ``(map_index, unique_id)`` pairs per consensus feature.
    feature_frames : sequence of pd.DataFrame
        Per-sample frames from ``feature_map_to_frame`` in map order,
        with RTs already adjusted.
    sample_names : sequence of str
        Sample column names in map order.

    Returns
    -------
    table : pd.DataFrame
        Feature table sorted by ``mzmed`` then ``rtmed``, indexed
        ``FT0001``..., with NaN for samples where the feature is absent.
    members : list
        Member pairs of every table row, in row order. Empty groups are
        dropped.
    """
    if len(feature_frames) != len(sample_names):
        raise ValueError(
            f"Got {len(feature_frames)} feature frames but {len(sample_names)} names."
        )

    rows = []
    kept = []
    for group in members:
        if not group:
            continue
        sub = pd.concat([feature_frames[m].loc[[uid]] for m, uid in group])
        row = {
            "mzmed": float(np.median(sub["mz"])),
            "mzmin": float(sub["mz_min"].min()),
            "mzmax": float(sub["mz_max"].max()),
            "rtmed": float(np.median(sub["rt"])),
            "rtmin": float(sub["rt_min"].min()),
            "rtmax": float(sub["rt_max"].max()),
            "npeaks": len(group),
        }
        for name in sample_names:
            row[name] = np.nan
        for (m, _uid), intensity in zip(group, sub["intensity"]):
            name = sample_names[m]
            # a sample contributing twice keeps its strongest feature
            if np.isnan(row[name]) or intensity > row[name]:
                row[name] = float(intensity)
        rows.append(row)
        kept.append(list(group))

    table = pd.DataFrame(rows, columns=DEFINITION_COLUMNS + list(sample_names))
    order = np.lexsort((table["rtmed"].to_numpy(), table["mzmed"].to_numpy()))
    table = table.iloc[order].reset_index(drop=True)
    table["npeaks"] = table["npeaks"].astype(int)
    table.index = pd.Index(make_feature_ids(len(table)), name="feature_id")
    return table, [kept[i] for i in order]


def consensus_to_table(
    consensus_map: oms.ConsensusMap,
    feature_frames: Sequence[pd.DataFrame],
    sample_names: Sequence[str],
) -> tuple[pd.DataFrame, list[list[tuple[int, int]]]]:
    """Flatten a consensus map into the feature table.

    See :func:`build_feature_table` for the returned values.
    """
    return build_feature_table(
        consensus_members(consensus_map), feature_frames, sample_names
    )


def filter_by_occurrence(
    table: pd.DataFrame,
    sample_groups: Mapping[str, str] | None = None,
    min_fraction: float = 0.4,
    min_samples: int = 1,
) -> pd.DataFrame:
    """
    Keep features detected in enough samples of at least one group.

    A feature passes if, for some sample group, the number of samples of
    that group with a detected (non-missing) intensity is at least
    ``min_samples`` and at least ``min_fraction`` of the group size.

    Parameters
    ----------
    table : pd.DataFrame
        Feature table before gap filling.
    sample_groups : mapping of str to str, optional
        Sample column -> group label. All samples form one group when
        omitted; samples missing from the mapping form their own group
        ``"ungrouped"``.
    min_fraction : float, default=0.4
    min_samples : int, default=1

    Returns
    -------
    pd.DataFrame
        Filtered table, ids unchanged.
    """
    samples = sample_columns(table)
    groups = pd.Series(
        {s: (sample_groups or {}).get(s, "ungrouped") for s in samples}
    )
    detected = table[samples].notna()

    keep = pd.Series(False, index=table.index)
    for _label, members in groups.groupby(groups):
        cols = list(members.index)
        counts = detected[cols].sum(axis=1)
        keep |= (counts >= min_samples) & (counts >= min_fraction * len(cols) - 1e-9)

    n_removed = int((~keep).sum())
    if n_removed:
        logger.info("Removed %d of %d features by occurrence", n_removed, len(table))
    return table[keep]
