"""ORM models package exports."""

from dealmerge.models.duplicates import DuplicateCluster, DuplicateDetection
from dealmerge.models.entities import ENTITY_MODELS, Contact, Deal, MergeableEntityMixin, Vendor
from dealmerge.models.field_conflict import FieldConflictRecord
from dealmerge.models.merge_history import MergeHistory

__all__ = [
    "ENTITY_MODELS",
    "Contact",
    "Deal",
    "DuplicateCluster",
    "DuplicateDetection",
    "FieldConflictRecord",
    "MergeHistory",
    "MergeableEntityMixin",
    "Vendor",
]
