"""SQLAlchemy metadata registry import for Alembic."""

from dealmerge.models import (
    Contact,
    Deal,
    DuplicateCluster,
    DuplicateDetection,
    FieldConflictRecord,
    MergeHistory,
    Vendor,
)
from dealmerge.models.base import Base

__all__ = [
    "Base",
    "Deal",
    "Vendor",
    "Contact",
    "MergeHistory",
    "FieldConflictRecord",
    "DuplicateDetection",
    "DuplicateCluster",
]
