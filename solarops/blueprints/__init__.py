"""
Solar Operations Backend
Blueprint registry and shared request helpers.
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from solarops.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
    StoreUnavailableError,
    UnauthorizedError,
    UnknownStageError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def pagination_args(default_limit=100, max_limit=500):
    """Read limit/offset query params.

    Query params:
        limit  — max items (default 100, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (limit, offset)
    """
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return max(limit, 1), offset


def register_error_handlers(bp):
    """Map the service exception taxonomy to JSON responses on ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return jsonify({"error": str(error)}), 404

    @bp.errorhandler(UnknownStageError)
    def _handle_unknown_stage(error: UnknownStageError):
        return jsonify({
            "error": str(error),
            "stage_id": error.stage_id,
            "known_stages": error.known_stages,
        }), 400

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return jsonify({"error": str(error), "details": error.details}), 400

    @bp.errorhandler(PreconditionFailedError)
    def _handle_precondition(error: PreconditionFailedError):
        return jsonify({
            "error": str(error),
            "transition": error.transition,
            "expected_states": error.expected,
            "actual_state": error.actual,
        }), 409

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return jsonify({"error": str(error)}), 409

    @bp.errorhandler(UnauthorizedError)
    def _handle_unauthorized(error: UnauthorizedError):
        return jsonify({"error": str(error)}), 401

    @bp.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        return jsonify({"error": "Permission denied", "required": error.capability}), 403

    @bp.errorhandler(StoreUnavailableError)
    def _handle_store_unavailable(error: StoreUnavailableError):
        return jsonify({"error": str(error) or "Document store unavailable"}), 503

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description}), error.code
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return jsonify({"error": "Internal server error"}), 500

    return bp
