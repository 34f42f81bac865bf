"""Unit-of-work helper shared by every mutating merge operation."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work(db: Session, *, operation: str) -> Iterator[Session]:
    """Commit on success, roll back on any failure and re-raise it unchanged.

    The session autobegins on its first statement, so everything executed inside
    the block belongs to one transaction. `BaseException` is intercepted so that
    cancellation of the surrounding call rolls back like an ordinary error. A
    failing rollback is not suppressed.
    """

    try:
        yield db
    except BaseException:
        logger.info("merge.transaction_rollback operation=%s", operation)
        db.rollback()
        raise
    db.commit()
