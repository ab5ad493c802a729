"""Archive transfer adapters."""

from .base import ArchiveTransfer, ProgressCallback
from .progress import (
    EXPORT_MILESTONES,
    IMPORT_MILESTONES,
    Milestone,
    MilestoneProgress,
    ProgressStrategy,
    ProgressUpdate,
)
from .sqlpackage import SqlPackageTransfer, archive_file_name

__all__ = [
    "ArchiveTransfer",
    "ProgressCallback",
    "EXPORT_MILESTONES",
    "IMPORT_MILESTONES",
    "Milestone",
    "MilestoneProgress",
    "ProgressStrategy",
    "ProgressUpdate",
    "SqlPackageTransfer",
    "archive_file_name",
]
