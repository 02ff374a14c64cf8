"""
Atomic unit-of-work helper.

Wraps one short-lived session: commit on success, rollback on any failure.
Storage failures are logged with the operation context and surfaced as
InternalError; expected lending errors are re-raised unchanged.
"""

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lending.core.exceptions import InternalError, LendingError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(
    session_factory: Callable[[], Session], operation: str, **context: Any
) -> Iterator[Session]:
    correlation_id = uuid.uuid4().hex[:8]
    db = session_factory()
    try:
        yield db
        db.commit()
    except LendingError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"{operation} failed, transaction rolled back",
            extra={
                "context": {
                    "operation": operation,
                    "correlation_id": correlation_id,
                    "error": str(e),
                    **context,
                }
            },
            exc_info=True,
        )
        raise InternalError(
            f"{operation} failed", {"correlation_id": correlation_id}
        ) from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
