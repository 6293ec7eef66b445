from .config import WorkflowSettings
from .filters import apply_filter
from .io import find_raw_files, load_experiment, read_sample_metadata
from .processing import FBMNWorkflow, WorkflowResult

__version__ = "0.1.0"

__all__ = [
    "FBMNWorkflow",
    "WorkflowResult",
    "WorkflowSettings",
    "apply_filter",
    "find_raw_files",
    "load_experiment",
    "read_sample_metadata",
    "__version__",
]
