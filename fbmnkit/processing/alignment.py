"""Retention time alignment of feature maps and raw experiments.

Feature maps are aligned to a reference map with OpenMS pose clustering.
The resulting transformations are then applied to the raw experiments so
that gap filling and MS2 linking work on adjusted retention times.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import pandas as pd
import pyopenms as oms

from ..config import AlignmentSettings

logger = logging.getLogger(__name__)


def select_reference(
    feature_maps: Sequence[oms.FeatureMap],
    reference: str | int | None = None,
    sample_names: Sequence[str] | None = None,
) -> int:
    """
    Return the index of the reference feature map.

    Parameters
    ----------
    feature_maps : sequence of pyopenms.FeatureMap
        Maps to align.
    reference : str, int or None, default=None
        ``None`` selects the map with the most features, an int is used as
        an index and a str is looked up in *sample_names*.
    sample_names : sequence of str, optional
        Names matching *feature_maps*; required when *reference* is a str.

    Raises
    ------
    ValueError
        If *feature_maps* is empty or the index is out of bounds.
    KeyError
        If a named reference is not among *sample_names*.
    """
    if len(feature_maps) == 0:
        raise ValueError("feature_maps must not be empty.")
    if reference is None:
        sizes = [fmap.size() for fmap in feature_maps]
        return int(np.argmax(sizes))
    if isinstance(reference, str):
        names = list(sample_names or [])
        if reference not in names:
            raise KeyError(
                f"Reference sample '{reference}' not found. Available: {names}"
            )
        return names.index(reference)
    if reference < 0 or reference >= len(feature_maps):
        raise ValueError(
            f"Reference index {reference} out of bounds for {len(feature_maps)} maps."
        )
    return int(reference)


def align_feature_maps(
    feature_maps: Sequence[oms.FeatureMap],
    settings: AlignmentSettings | None = None,
    sample_names: Sequence[str] | None = None,
) -> list[oms.TransformationDescription | None]:
    """
    Align feature maps in place against a reference map.

    Parameters
    ----------
    feature_maps : sequence of pyopenms.FeatureMap
        Maps to align; modified in place.
    settings : AlignmentSettings, optional
        Alignment parameters.
    sample_names : sequence of str, optional
        Names of the maps, used to resolve a named reference and in logs.

    Returns
    -------
    list
        One ``TransformationDescription`` per map, ``None`` for the
        reference map and for maps without features.

    Raises
    ------
    ValueError
        If the selected reference map holds no features.
    """
    if settings is None:
        settings = AlignmentSettings()
    names = list(sample_names) if sample_names is not None else [
        str(i) for i in range(len(feature_maps))
    ]

    if sum(fmap.size() > 0 for fmap in feature_maps) < 2:
        logger.info(
            "Less than two samples with features, skipping retention time alignment"
        )
        return [None] * len(feature_maps)

    ref_index = select_reference(feature_maps, settings.reference, names)
    if feature_maps[ref_index].size() == 0:
        raise ValueError(f"Reference sample '{names[ref_index]}' has no features.")
    logger.info(
        "Aligning %d maps against reference '%s'", len(feature_maps), names[ref_index]
    )

    aligner = oms.MapAlignmentAlgorithmPoseClustering()
    params = aligner.getDefaults()
    params.setValue("max_num_peaks_considered", int(settings.max_num_peaks_considered))
    params.setValue(
        "pairfinder:distance_MZ:max_difference", float(settings.mz_max_difference)
    )
    params.setValue("pairfinder:distance_MZ:unit", settings.mz_unit)
    params.setValue(
        "pairfinder:distance_RT:max_difference", float(settings.rt_max_difference)
    )
    aligner.setParameters(params)
    aligner.setReference(feature_maps[ref_index])

    transformations: list[oms.TransformationDescription | None] = []
    transformer = oms.MapAlignmentTransformer()
    for i, fmap in enumerate(feature_maps):
        if i == ref_index:
            transformations.append(None)
            continue
        if fmap.size() == 0:
            logger.warning("No features in '%s', leaving its retention times", names[i])
            transformations.append(None)
            continue
        trafo = oms.TransformationDescription()
        try:
            aligner.align(fmap, trafo)
        except RuntimeError as exc:
            logger.error("Alignment failed for '%s': %s", names[i], exc)
            raise
        transformer.transformRetentionTimes(fmap, trafo, True)
        transformations.append(trafo)
    return transformations


def apply_transformations(
    experiments: Sequence[oms.MSExperiment],
    transformations: Sequence[oms.TransformationDescription | None],
) -> None:
    """Apply RT transformations to raw experiments in place."""
    if len(experiments) != len(transformations):
        raise ValueError(
            f"Got {len(experiments)} experiments but {len(transformations)} "
            "transformations."
        )
    transformer = oms.MapAlignmentTransformer()
    for exp, trafo in zip(experiments, transformations):
        if trafo is not None:
            transformer.transformRetentionTimes(exp, trafo, True)


def transform_rt(
    values: Sequence[float] | np.ndarray,
    trafo: oms.TransformationDescription | None,
) -> np.ndarray:
    """Map raw retention times through a transformation."""
    values = np.asarray(values, dtype=float)
    if trafo is None:
        return values.copy()
    return np.array([trafo.apply(float(v)) for v in values], dtype=float)


def adjust_feature_frame(
    frame: pd.DataFrame,
    trafo: oms.TransformationDescription | None,
) -> pd.DataFrame:
    """Return a feature frame with ``rt``, ``rt_min`` and ``rt_max`` adjusted."""
    frame = frame.copy()
    for col in ("rt", "rt_min", "rt_max"):
        frame[col] = transform_rt(frame[col].to_numpy(), trafo)
    return frame


def transformation_frame(
    transformations: Sequence[oms.TransformationDescription | None],
    sample_names: Sequence[str],
) -> pd.DataFrame:
    """
    Collect the alignment anchor points of every sample.

    Returns
    -------
    pd.DataFrame
        Columns ``sample``, ``rt_raw`` and ``rt_adjusted``. The reference
        sample has no rows.
    """
    rows = []
    for name, trafo in zip(sample_names, transformations):
        if trafo is None:
            continue
        for point in trafo.getDataPoints():
            rows.append(
                {"sample": name, "rt_raw": point.first, "rt_adjusted": point.second}
            )
    return pd.DataFrame(rows, columns=["sample", "rt_raw", "rt_adjusted"])
