"""Shared helper functions for services and blueprints.

get_or_raise:     primary-key lookup that raises NotFoundError
parse_date:       ISO / DD.MM.YYYY date parsing, ValidationError on bad input
parse_decimal:    optional non-negative number
commit_or_raise:  commit the unit of work, translating store errors
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError, OperationalError

from cutroom.core.exceptions import ConflictError, NotFoundError, TransientStoreError, ValidationError
from cutroom.models import db

logger = logging.getLogger(__name__)


def get_or_raise(model, pk, label=None, *, for_update=False):
    """Fetch a row by primary key or raise NotFoundError.

    ``for_update`` takes a row lock (SELECT … FOR UPDATE) on stores that
    support it and always re-reads the row instead of trusting the
    identity map.
    """
    label = label or model.__name__
    if pk is None:
        raise NotFoundError(label)
    if for_update:
        obj = db.session.execute(
            db.select(model).filter_by(id=pk).with_for_update().execution_options(populate_existing=True)
        ).scalar_one_or_none()
    else:
        obj = db.session.get(model, pk)
    if obj is None:
        raise NotFoundError(label, pk)
    return obj


def parse_date(value, field="date"):
    """Parse a date string (ISO or DD.MM.YYYY).

    Empty input → None.  Anything unparseable raises ValidationError.
    """
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    for parser in (date.fromisoformat, lambda v: datetime.fromisoformat(v).date()):
        try:
            return parser(str(value))
        except (ValueError, TypeError):
            continue
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        raise ValidationError(
            f"Invalid {field}. Use YYYY-MM-DD.", details={field: "invalid date"},
        ) from None


def parse_decimal(value, field):
    if value in (None, ""):
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: "not a number"}) from None
    if number < 0:
        raise ValidationError(f"{field} cannot be negative", details={field: "negative"})
    return number


def parse_choice(value, choices, field):
    if value not in choices:
        raise ValidationError(
            f"Invalid {field}. Must be one of: {', '.join(choices)}.",
            details={field: f"one of {list(choices)}"},
        )
    return value


# ── Unit-of-work commit ──────────────────────────────────────────────────────

def commit_or_raise():
    """Commit the current session, translating store failures.

    IntegrityError   → rollback, ConflictError (unique/constraint race)
    OperationalError → rollback, TransientStoreError (connection / lock)

    Anything else propagates after rollback.  Nothing is ever partially
    applied: the whole unit of work commits or none of it does.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError("Duplicate or constraint violation") from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        raise TransientStoreError() from exc
    except Exception:
        db.session.rollback()
        raise


@contextmanager
def unit_of_work():
    """Run the block as one transaction: commit on success, roll back on error.

    Usage::

        with unit_of_work():
            task_board.move(task_id, "done", 0)
            record_audit(...)
    """
    try:
        yield db.session
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error in unit of work: %s", exc.orig)
        raise ConflictError("Duplicate or constraint violation") from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error in unit of work")
        raise TransientStoreError() from exc
    except Exception:
        db.session.rollback()
        raise
    commit_or_raise()
