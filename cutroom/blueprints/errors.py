"""
App-wide error handlers.

Every typed service failure maps to one status and one error code, the
same on every endpoint.  Bodies never carry stack traces or driver
messages.
"""

import logging

from flask import request
from sqlalchemy.exc import IntegrityError, OperationalError
from werkzeug.exceptions import HTTPException

from cutroom.core.exceptions import (
    AuthenticationError,
    ConflictError,
    CutroomError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from cutroom.models import db
from cutroom.utils.errors import E, api_error

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: E.VALIDATION_INVALID,
    401: E.UNAUTHORIZED,
    403: E.FORBIDDEN,
    404: E.NOT_FOUND,
    409: E.CONFLICT_DUPLICATE,
    413: E.PAYLOAD_TOO_LARGE,
    415: E.UNSUPPORTED_MEDIA,
}


def register_error_handlers(app):

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        logger.debug("Not found: %s", exc)
        return api_error(E.NOT_FOUND, exc.message)

    @app.errorhandler(ForbiddenError)
    def _forbidden(exc):
        details = {"action": exc.action} if exc.action else None
        return api_error(E.FORBIDDEN, exc.message, details=details)

    @app.errorhandler(ValidationError)
    def _validation(exc):
        return api_error(E.VALIDATION_INVALID, exc.message, details=exc.details or None)

    @app.errorhandler(AuthenticationError)
    def _unauthorized(exc):
        return api_error(E.UNAUTHORIZED, exc.message)

    @app.errorhandler(InvalidTransitionError)
    def _invalid_transition(exc):
        return api_error(E.CONFLICT_STATE, exc.message, details=exc.details or None)

    @app.errorhandler(ConflictError)
    def _conflict(exc):
        return api_error(E.CONFLICT_DUPLICATE, exc.message, details=exc.details or None)

    @app.errorhandler(TransientStoreError)
    def _transient(exc):
        return api_error(E.DATABASE, exc.message)

    @app.errorhandler(CutroomError)
    def _other(exc):
        logger.error("Unmapped service error: %s", exc, exc_info=True)
        return api_error(E.INTERNAL, exc.message, status=500)

    @app.errorhandler(IntegrityError)
    def _integrity(exc):
        db.session.rollback()
        logger.warning("Integrity error on %s %s: %s", request.method, request.path, exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")

    @app.errorhandler(OperationalError)
    def _operational(exc):
        db.session.rollback()
        logger.exception("Database operational error on %s %s", request.method, request.path)
        return api_error(E.DATABASE, "Database temporarily unavailable, please retry")

    @app.errorhandler(HTTPException)
    def _http(exc):
        if exc.code == 429:
            return api_error("ERR_RATE_LIMITED", "Too many requests", status=429,
                             details={"retry_after": exc.description})
        code = _HTTP_CODES.get(exc.code, E.INTERNAL if exc.code >= 500 else E.VALIDATION_INVALID)
        return api_error(code, exc.description or exc.name, status=exc.code)

    @app.errorhandler(Exception)
    def _unexpected(exc):
        db.session.rollback()
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return api_error(E.INTERNAL, "Internal server error", status=500)
