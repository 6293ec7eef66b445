"""File I/O for raw LC-MS/MS data and GNPS export files."""

from .readers import (
    experiment_to_frame,
    find_raw_files,
    load_experiment,
    read_sample_metadata,
    sniff_delimiter,
)
from .writers import (
    format_feature_id,
    write_edge_table,
    write_feature_table,
    write_mgf,
    write_sample_metadata,
)

__all__ = [
    "find_raw_files",
    "load_experiment",
    "experiment_to_frame",
    "read_sample_metadata",
    "sniff_delimiter",
    "format_feature_id",
    "write_feature_table",
    "write_mgf",
    "write_edge_table",
    "write_sample_metadata",
]
