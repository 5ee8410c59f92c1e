"""Shared utility functions for blueprints and services.

parse_date:        lenient date parsing for query filters (None on bad input)
pagination_args:   bounded page / per_page from the query string
paginated:         standard list envelope for Flask-SQLAlchemy paginations
commit_or_raise:   commit the unit of work, translating database errors
flush_or_raise:    flush pending changes with the same translation
"""
import logging
from datetime import date, datetime

from flask import request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from sigedoc.core.exceptions import ConflictError, PersistenceFailure, WorkflowError
from sigedoc.models import db

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 200


def parse_date(value):
    """Parse a date string (ISO or DD/MM/YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD/MM/YYYY (format used on printed oficios)
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d/%m/%Y").date()
    except (ValueError, TypeError):
        return None


def pagination_args(default_per_page=DEFAULT_PER_PAGE):
    """Return ``(page, per_page)`` from the query string, clamped to sane bounds."""
    page = max(1, request.args.get("page", 1, type=int))
    per_page = min(MAX_PER_PAGE, max(1, request.args.get("per_page", default_per_page, type=int)))
    return page, per_page


def paginated(pagination, key: str, serializer=None) -> dict:
    """Build the list envelope used by every paginated endpoint."""
    serializer = serializer or (lambda obj: obj.to_dict())
    return {
        key: [serializer(item) for item in pagination.items],
        "total": pagination.total,
        "page": pagination.page,
        "per_page": pagination.per_page,
        "pages": pagination.pages,
    }


def _run_or_raise(operation, action: str) -> None:
    try:
        operation()
    except (StaleDataError, IntegrityError) as exc:
        db.session.rollback()
        logger.warning("Conflict while persisting %s: %s", action, exc.__class__.__name__)
        raise ConflictError(
            f"Concurrent modification detected during '{action}'; reload and retry",
            {"action": action},
        ) from exc
    except WorkflowError:
        # Raised by model guards during flush
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database failure while persisting %s", action)
        raise PersistenceFailure(f"Could not persist '{action}'", {"action": action}) from exc


def commit_or_raise(action: str) -> None:
    """Commit the current session or roll it back and raise a typed error.

    StaleDataError (version mismatch) and IntegrityError (unique index)
    become ConflictError; any other database error becomes PersistenceFailure.
    """
    _run_or_raise(db.session.commit, action)


def flush_or_raise(action: str) -> None:
    _run_or_raise(db.session.flush, action)
