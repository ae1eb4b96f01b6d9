"""
QMS Platform
Blueprint registry and shared route helpers.

parse_pagination:        page / limit query params with the 1..100 rule
list_args:               sortBy / sortOrder passthrough
register_error_handlers: domain exception → HTTP mapping for one blueprint
"""

import logging

from flask import request
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from qms.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    TransitionError,
    ValidationError,
)
from qms.models import db
from qms.utils.errors import E, api_error

logger = logging.getLogger(__name__)

MAX_LIMIT = 100
PAGINATION_ERROR = (
    "Invalid pagination parameters. Page must be >= 1, limit must be between 1 and 100."
)


def parse_pagination(default_limit=10):
    """Read ``page`` / ``limit`` from the query string.

    Returns:
        (page, limit, None) on success, (None, None, error_response) otherwise.
    """
    try:
        page = int(request.args.get("page", 1))
        limit = int(request.args.get("limit", default_limit))
    except (TypeError, ValueError):
        return None, None, api_error(E.VALIDATION_PAGINATION, PAGINATION_ERROR)
    if page < 1 or limit < 1 or limit > MAX_LIMIT:
        return None, None, api_error(E.VALIDATION_PAGINATION, PAGINATION_ERROR)
    return page, limit, None


def sort_args():
    return request.args.get("sortBy"), request.args.get("sortOrder")


def int_arg(name):
    """Integer query parameter or None (non-numeric values are a 400)."""
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer") from None


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def register_error_handlers(bp):
    """Attach the platform's exception → response mapping to ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _not_found(error: NotFoundError):
        db.session.rollback()
        return api_error(E.NOT_FOUND, error.message)

    @bp.errorhandler(ValidationError)
    def _validation(error: ValidationError):
        db.session.rollback()
        return api_error(E.VALIDATION_INVALID, error.message, details=error.details or None)

    @bp.errorhandler(TransitionError)
    def _transition(error: TransitionError):
        db.session.rollback()
        return api_error(E.TRANSITION_INVALID, error.message)

    @bp.errorhandler(PermissionDenied)
    def _forbidden(error: PermissionDenied):
        db.session.rollback()
        return api_error(E.FORBIDDEN, error.message)

    @bp.errorhandler(ConflictError)
    def _conflict(error: ConflictError):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, error.message)

    @bp.errorhandler(StaleDataError)
    def _stale(error: StaleDataError):
        db.session.rollback()
        logger.warning("Concurrent update rejected on %s: %s", request.path, error)
        return api_error(E.CONFLICT_STALE, "Record was modified by another request")

    @bp.errorhandler(Exception)
    def _unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unhandled error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
