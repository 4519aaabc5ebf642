# Overview: Shared helpers for API routes: pagination and error-to-response mapping.

from flask import current_app, jsonify, request

from ..services.concurrency import TransactionFailure
from ..services.stock_ledger_service import InsufficientStockError
from ..validation import ConflictError, NotFoundError, ValidationError


def json_body() -> dict:
    """Request body as a JSON object; a missing body is an empty object."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload: expected an object")
    return payload


def page_args() -> tuple[int, int]:
    """page/per_page query params, clamped to MAX_PAGE_SIZE."""
    page = request.args.get("page", type=int) or 1
    per_page = request.args.get("per_page", type=int) or current_app.config["DEFAULT_PAGE_SIZE"]
    page = max(page, 1)
    per_page = max(1, min(per_page, current_app.config["MAX_PAGE_SIZE"]))
    return page, per_page


def bool_arg(name: str) -> bool | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in {"1", "true", "yes"}


def paginated(items: list[dict], total: int, page: int, per_page: int) -> dict:
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    return {
        "items": items,
        "count": len(items),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def error_response(exc: Exception, *, context: str = "Request"):
    """
    Map a service exception to (json, status):

    - ValidationError -> 422 with field details
    - InsufficientStockError -> 422 with product/available/requested
    - NotFoundError -> 404
    - ConflictError -> 409
    - TransactionFailure -> 500 (already rolled back)
    - anything else -> 500, logged with traceback
    """
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc), "details": exc.details}), 422
    if isinstance(exc, InsufficientStockError):
        return jsonify({"error": str(exc), "details": exc.to_dict()}), 422
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    if isinstance(exc, TransactionFailure):
        current_app.logger.error("%s: %s", context, exc)
        return jsonify({"error": str(exc)}), 500

    current_app.logger.exception("%s failed", context)
    return jsonify({"error": "Internal server error"}), 500
