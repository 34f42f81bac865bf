"""Merge error taxonomy.

Store failures are not wrapped: SQLAlchemy errors propagate to callers as-is.
"""


class MergeError(Exception):
    """Base class for merge engine failures with a user-facing message."""


class MergeValidationError(MergeError):
    """Bad input cardinality or an otherwise invalid request."""


class MergeNotFoundError(MergeError):
    """Target entity, cluster, merge history or conflict does not exist."""


class MergeStateError(MergeError):
    """Operation is not allowed in the record's current state."""
