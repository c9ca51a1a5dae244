from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Optional

from flask import Flask, jsonify, request, session
from werkzeug.exceptions import HTTPException

from ..core.enums import Role
from ..core.exceptions import AuthenticationError, DomainError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "NotFound": 404,
    "ValidationFailed": 400,
    "UnconfirmedHolidayChange": 409,
    "ConcurrencyConflict": 409,
    "Transient": 503,
    "PermissionDenied": 403,
    "Inconsistent": 500,
}


def status_for(err: DomainError) -> int:
    if isinstance(err, AuthenticationError):
        return 401
    return STATUS_BY_KIND.get(err.kind, 400)


def ok(payload: Optional[dict] = None, status: int = 200):
    return jsonify({"success": True, **(payload or {})}), status


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def current_user_id() -> Optional[str]:
    return session.get("user_id")


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if "user_id" not in session:
            raise AuthenticationError("Please sign in to continue")
        return view(*args, **kwargs)

    return wrapper


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if "user_id" not in session:
            raise AuthenticationError("Please sign in to continue")
        if session.get("role") != Role.ADMIN.value:
            raise PermissionDeniedError("Administrator role required")
        return view(*args, **kwargs)

    return wrapper


def require_admin_or_student(student_id: str) -> None:
    """Students may only read their own records."""
    if session.get("role") == Role.ADMIN.value:
        return
    if session.get("role") == Role.STUDENT.value and session.get("student_id") == str(student_id):
        return
    raise PermissionDeniedError("You can only view your own records")


def int_arg(name: str, default: Optional[int] = None) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        if default is None:
            raise ValidationError(f"Missing query parameter {name!r}")
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Query parameter {name!r} must be an integer")


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(DomainError)
    def handle_domain_error(err: DomainError):
        status = status_for(err)
        if status >= 500:
            logger.error("%s on %s %s: %s", err.kind, request.method, request.path, err.message)
        return jsonify({"success": False, "error": err.to_dict()}), status

    @app.errorhandler(HTTPException)
    def handle_http_error(err: HTTPException):
        body: dict[str, Any] = {"kind": err.name, "message": err.description, "details": {}}
        return jsonify({"success": False, "error": body}), err.code

    @app.errorhandler(Exception)
    def handle_unexpected(err: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        body = {"kind": "Internal", "message": "Internal server error", "details": {}}
        return jsonify({"success": False, "error": body}), 500
