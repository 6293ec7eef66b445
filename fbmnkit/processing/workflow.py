"""End-to-end LC-MS/MS preprocessing for feature-based molecular networking.

:class:`FBMNWorkflow` chains the processing steps in the order of the
classic xcms/CAMERA tutorial:

1. load raw files
2. detect features per sample
3. annotate adducts per sample (optional)
4. align retention times (optional)
5. group features across samples and filter them by occurrence
6. fill gaps (optional)
7. extract, link and consolidate MS2 spectra
8. merge adduct annotations and build ion identity edges

and :meth:`FBMNWorkflow.export` writes the files uploaded to GNPS.

Examples
--------
>>> from fbmnkit import FBMNWorkflow, WorkflowSettings
>>> from fbmnkit.io import find_raw_files
>>> workflow = FBMNWorkflow(WorkflowSettings.default())
>>> result = workflow.run(find_raw_files("data/"))
>>> workflow.export(result, "gnps_upload/")
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

import pandas as pd

from ..config import WorkflowSettings
from ..io.readers import experiment_to_frame, load_experiment
from ..io.writers import (
    write_edge_table,
    write_feature_table,
    write_mgf,
    write_sample_metadata,
)
from .alignment import (
    adjust_feature_frame,
    align_feature_maps,
    apply_transformations,
    transformation_frame,
)
from .annotation import annotate_adducts, consensus_annotations, ion_identity_edges
from .gap_filling import fill_gaps
from .grouping import consensus_to_table, filter_by_occurrence, group_features
from .ms2 import (
    SPECTRUM_COLUMNS,
    consolidate_spectra,
    extract_ms2_spectra,
    keep_features_with_ms2,
    link_ms2_to_features,
)
from .peak_picking import detect_features, feature_map_to_frame

logger = logging.getLogger(__name__)


@dataclass
class WorkflowResult:
    """
    Output of :meth:`FBMNWorkflow.run`.

    Attributes
    ----------
    feature_table : pd.DataFrame
        Feature definitions and per-sample intensities, indexed by id.
    filled : pd.DataFrame
        Boolean mask of the intensities recovered by gap filling.
    spectra : pd.DataFrame
        One consolidated MS2 spectrum per feature.
    annotations : pd.DataFrame or None
        Adduct annotations, ``None`` when annotation is disabled.
    edges : pd.DataFrame
        Ion identity edges (may be empty).
    alignment : pd.DataFrame
        Alignment data points (``sample``, ``rt_raw``, ``rt_adjusted``).
    sample_names : list of str
        Raw file names, in processing order.
    sample_metadata : pd.DataFrame or None
        Sample sheet given to :meth:`FBMNWorkflow.run`.
    polarity : str
        Ion mode used for annotation and MGF charges.
    """

    feature_table: pd.DataFrame
    filled: pd.DataFrame
    spectra: pd.DataFrame
    annotations: pd.DataFrame | None
    edges: pd.DataFrame
    alignment: pd.DataFrame
    sample_names: list[str]
    sample_metadata: pd.DataFrame | None = None
    polarity: str = "positive"

    def summary(self) -> dict[str, int]:
        """Return the main counts of the run."""
        return {
            "samples": len(self.sample_names),
            "features": len(self.feature_table),
            "filled values": int(self.filled.to_numpy().sum()),
            "MS2 spectra": len(self.spectra),
            "ion identity edges": len(self.edges),
        }


class FBMNWorkflow:
    """
    Preprocess raw LC-MS/MS files into GNPS FBMN input files.

    Parameters
    ----------
    settings : WorkflowSettings, optional
        Settings of every step. Defaults are used when omitted.
    """

    def __init__(self, settings: WorkflowSettings | None = None):
        self.settings = settings if settings is not None else WorkflowSettings()

    def _sample_groups(
        self, sample_names: list[str], sample_metadata: pd.DataFrame | None
    ) -> dict[str, str] | None:
        if sample_metadata is None:
            return None
        missing = [n for n in sample_names if n not in sample_metadata.index]
        if missing:
            warnings.warn(
                f"{len(missing)} raw file(s) not listed in the sample metadata: "
                f"{missing}",
                UserWarning,
                stacklevel=3,
            )
        if "sample_group" not in sample_metadata.columns:
            return None
        return {
            name: str(sample_metadata.at[name, "sample_group"])
            for name in sample_names
            if name in sample_metadata.index
        }

    def run(
        self,
        raw_files: Sequence[str | Path],
        sample_metadata: pd.DataFrame | None = None,
        on_step: Callable[[str], None] | None = None,
    ) -> WorkflowResult:
        """
        Run the full preprocessing on a set of raw files.

        Parameters
        ----------
        raw_files : sequence of str or Path
            mzML/mzXML files, one per sample. Processed sequentially.
        sample_metadata : pd.DataFrame, optional
            Sample sheet indexed by file name (see
            :func:`~fbmnkit.io.readers.read_sample_metadata`). Its
            ``sample_group`` column defines the groups used by the
            occurrence filter.
        on_step : callable, optional
            Called with a short description before every step.

        Returns
        -------
        WorkflowResult

        Raises
        ------
        ValueError
            If no file is given or two files share a name.
        """
        s = self.settings
        paths = [Path(p) for p in raw_files]
        if not paths:
            raise ValueError("No raw files given.")
        names = [p.name for p in paths]
        if len(set(names)) != len(names):
            raise ValueError(f"Raw file names must be unique, got {names}.")

        def step(description: str) -> None:
            logger.info(description)
            if on_step is not None:
                on_step(description)

        step("Loading raw files")
        experiments = [load_experiment(p) for p in paths]

        step("Detecting features")
        feature_maps = [
            detect_features(exp, s.peak_picking, name)
            for exp, name in zip(experiments, names)
        ]

        if s.annotation.enabled:
            step("Annotating adducts")
            feature_maps = [
                annotate_adducts(fmap, s.annotation) for fmap in feature_maps
            ]
        frames = [feature_map_to_frame(fmap) for fmap in feature_maps]

        transformations = [None] * len(feature_maps)
        if s.alignment.enabled:
            step("Aligning retention times")
            transformations = align_feature_maps(feature_maps, s.alignment, names)
            apply_transformations(experiments, transformations)
            frames = [
                adjust_feature_frame(frame, trafo)
                for frame, trafo in zip(frames, transformations)
            ]

        step("Grouping features")
        consensus_map = group_features(feature_maps, names, s.grouping)
        table, members = consensus_to_table(consensus_map, frames, names)
        filtered = filter_by_occurrence(
            table,
            self._sample_groups(names, sample_metadata),
            min_fraction=s.grouping.min_fraction,
            min_samples=s.grouping.min_samples,
        )
        kept = table.index.isin(filtered.index)
        members = [m for m, keep in zip(members, kept) if keep]
        table = filtered
        logger.info("Feature table: %d features x %d samples", len(table), len(names))

        if s.gap_filling.enabled:
            step("Filling gaps")
            ms1_frames = {
                name: experiment_to_frame(exp, ms_level=1)
                for exp, name in zip(experiments, names)
            }
            table, filled = fill_gaps(table, ms1_frames, s.gap_filling)
        else:
            filled = pd.DataFrame(False, index=table.index, columns=names)

        step("Extracting MS2 spectra")
        spectra = pd.concat(
            [extract_ms2_spectra(exp, name) for exp, name in zip(experiments, names)],
            ignore_index=True,
        )
        if spectra.empty:
            spectra = pd.DataFrame(columns=SPECTRUM_COLUMNS)
        linked = link_ms2_to_features(spectra, table, s.ms2)
        consolidated = consolidate_spectra(linked, s.ms2)

        annotations = None
        edges = pd.DataFrame(columns=["ID1", "ID2", "EdgeType", "Score", "Annotation"])
        if s.annotation.enabled:
            annotations, memberships = consensus_annotations(
                table, members, frames, names
            )
            edges = ion_identity_edges(annotations, memberships, table)

        if s.ms2.only_with_ms2:
            n_before = len(table)
            table = keep_features_with_ms2(table, consolidated)
            filled = filled.loc[table.index]
            if annotations is not None:
                annotations = annotations.loc[table.index]
            edges = edges[
                edges["ID1"].isin(table.index) & edges["ID2"].isin(table.index)
            ].reset_index(drop=True)
            logger.info(
                "Kept %d of %d features with an MS2 spectrum", len(table), n_before
            )

        return WorkflowResult(
            feature_table=table,
            filled=filled,
            spectra=consolidated,
            annotations=annotations,
            edges=edges,
            alignment=transformation_frame(transformations, names),
            sample_names=names,
            sample_metadata=sample_metadata,
            polarity=s.annotation.polarity,
        )

    def export(self, result: WorkflowResult, output_dir: str | Path) -> dict[str, Path]:
        """
        Write the GNPS FBMN input files.

        Parameters
        ----------
        result : WorkflowResult
            Output of :meth:`run`.
        output_dir : str or Path
            Directory to write to, created if needed.

        Returns
        -------
        dict of str to Path
            Written files keyed by ``"quantification"``, ``"mgf"`` and,
            when available, ``"edges"`` and ``"metadata"``.
        """
        style = self.settings.export.style
        prefix = self.settings.export.prefix
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        suffix = "txt" if style == "xcms" else "csv"
        written = {
            "quantification": output_dir / f"{prefix}_quant.{suffix}",
            "mgf": output_dir / f"{prefix}.mgf",
        }
        write_feature_table(result.feature_table, written["quantification"], style)

        spectra = result.spectra
        if not spectra.empty:
            spectra = spectra[spectra["feature_id"].isin(result.feature_table.index)]
        write_mgf(spectra, written["mgf"], style, polarity=result.polarity)

        if result.annotations is not None:
            written["edges"] = output_dir / f"{prefix}_edges_msannotation.csv"
            write_edge_table(result.edges, written["edges"], style)

        if result.sample_metadata is not None:
            written["metadata"] = output_dir / f"{prefix}_metadata.tsv"
            write_sample_metadata(result.sample_metadata, written["metadata"])

        logger.info("Exported %d files to %s", len(written), output_dir)
        return written
