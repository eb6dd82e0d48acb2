"""Shared utility functions.

parse_datetime:   ISO-8601 string → aware datetime (raises ValueError on bad input)
db_transaction:   commit-or-rollback unit of work with classified store errors
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime, time, timezone

from sqlalchemy.exc import IntegrityError, OperationalError

from workitems.core.exceptions import ConflictError, UpstreamUnavailableError
from workitems.models import db

logger = logging.getLogger(__name__)


def parse_datetime(value):
    """Parse an ISO-8601 date or datetime to a timezone-aware datetime.

    Returns None for empty input. Naive values are taken as UTC; a bare
    date becomes midnight UTC. Raises ValueError on anything else.

    Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS[.ffffff][+HH:MM]
    - trailing "Z" for UTC
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValueError(
                f"Invalid datetime {value!r}. Use ISO-8601, e.g. 2025-01-31T17:00:00Z."
            ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@contextmanager
def db_transaction():
    """Run a block as one atomic unit of work on ``db.session``.

    Commits when the block exits cleanly; rolls back on any exception.

    IntegrityError   → ConflictError (duplicate / constraint violation)
    OperationalError → UpstreamUnavailableError (connection / lock issues)
    Other            → re-raised unchanged after rollback

    Usage::

        with db_transaction():
            db.session.add(item)
            db.session.flush()
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error in transaction: %s", exc.orig)
        raise ConflictError("WorkItem", "constraint", str(exc.orig)) from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error in transaction")
        raise UpstreamUnavailableError("store", str(exc.orig)) from exc
    except Exception:
        db.session.rollback()
        raise
