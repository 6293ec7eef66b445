"""LC-MS/MS processing steps and the workflow that chains them."""

from .alignment import (
    align_feature_maps,
    apply_transformations,
    select_reference,
    transformation_frame,
)
from .annotation import (
    annotate_adducts,
    consensus_annotations,
    format_adduct,
    ion_identity_edges,
)
from .gap_filling import fill_gaps, integrate_region
from .grouping import consensus_to_table, filter_by_occurrence, group_features
from .ms2 import (
    consolidate_spectra,
    extract_ms2_spectra,
    keep_features_with_ms2,
    link_ms2_to_features,
    merge_spectra,
)
from .peak_picking import detect_features, feature_map_to_frame
from .quality import ExperimentSummary, summarize_experiment
from .workflow import FBMNWorkflow, WorkflowResult

__all__ = [
    "detect_features",
    "feature_map_to_frame",
    "select_reference",
    "align_feature_maps",
    "apply_transformations",
    "transformation_frame",
    "group_features",
    "consensus_to_table",
    "filter_by_occurrence",
    "fill_gaps",
    "integrate_region",
    "extract_ms2_spectra",
    "link_ms2_to_features",
    "merge_spectra",
    "consolidate_spectra",
    "keep_features_with_ms2",
    "annotate_adducts",
    "format_adduct",
    "consensus_annotations",
    "ion_identity_edges",
    "ExperimentSummary",
    "summarize_experiment",
    "FBMNWorkflow",
    "WorkflowResult",
]
