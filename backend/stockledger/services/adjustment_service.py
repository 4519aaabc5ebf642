# Overview: Manual stock adjustments (counts, damage, corrections) recorded through the ledger.

from __future__ import annotations

import logging

from ..validation import ConflictError, ValidationError
from .audit_service import append_audit_log
from .concurrency import run_in_transaction
from . import stock_ledger_service as ledger

logger = logging.getLogger(__name__)

ADJUSTMENT_REASON = "adjustment"
MAX_NOTES_LENGTH = 1000


def _validate_reason(reason) -> None:
    if reason != ADJUSTMENT_REASON:
        raise ValidationError(
            "Manual stock movements must use reason 'adjustment'; "
            "purchases and sales record their own movements",
            {"reason": "must be 'adjustment'"},
        )


def _validate_notes(notes) -> str:
    if notes is None or not str(notes).strip():
        raise ValidationError("notes are required for adjustments", {"notes": "is required"})
    notes = str(notes).strip()
    if len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(
            f"notes exceeds max length {MAX_NOTES_LENGTH}",
            {"notes": f"exceeds max length {MAX_NOTES_LENGTH}"},
        )
    return notes


def _editable_adjustment(movement_id: int):
    movement = ledger.get_movement(movement_id)
    if movement.reason != ADJUSTMENT_REASON or movement.source_type is not None:
        raise ConflictError(
            f"Stock movement {movement.id} belongs to a {movement.source_type or movement.reason} "
            "and can only be changed through it"
        )
    return movement


def create_adjustment(
    *,
    product_id: int,
    type: str,
    quantity: int,
    notes: str | None,
    actor_id: int | None,
    reason: str = ADJUSTMENT_REASON,
):
    _validate_reason(reason)
    notes = _validate_notes(notes)

    def _op():
        movement = ledger.record_movement(product_id, type, quantity, ADJUSTMENT_REASON, actor_id, notes=notes)
        append_audit_log(
            action="created",
            model_type="StockMovement",
            model_id=movement.id,
            user_id=actor_id,
            new_values=movement.to_dict(),
        )
        return movement

    movement = run_in_transaction(_op, operation="Stock adjustment")
    logger.info(
        "Adjustment %s by user %s: product=%s %s %s",
        movement.id, actor_id, movement.product_id, movement.type, movement.quantity,
    )
    return movement


def update_adjustment(
    *,
    movement_id: int,
    actor_id: int | None,
    type: str | None = None,
    quantity: int | None = None,
    notes: str | None = None,
    reason: str | None = None,
):
    if reason is not None:
        _validate_reason(reason)
    if notes is not None:
        notes = _validate_notes(notes)

    def _op():
        movement = _editable_adjustment(movement_id)
        old_values = movement.to_dict()
        movement = ledger.update_movement(
            movement.id, actor_id, new_type=type, new_quantity=quantity, new_notes=notes
        )
        append_audit_log(
            action="updated",
            model_type="StockMovement",
            model_id=movement.id,
            user_id=actor_id,
            old_values=old_values,
            new_values=movement.to_dict(),
        )
        return movement

    movement = run_in_transaction(_op, operation="Stock adjustment update")
    logger.info(
        "Adjustment %s updated by user %s: product=%s %s %s",
        movement.id, actor_id, movement.product_id, movement.type, movement.quantity,
    )
    return movement


def delete_adjustment(*, movement_id: int, actor_id: int | None) -> None:
    """
    Revert an adjustment's stock effect and remove its row. The removal is
    kept in the audit log.
    """
    def _op():
        movement = _editable_adjustment(movement_id)
        append_audit_log(
            action="deleted",
            model_type="StockMovement",
            model_id=movement.id,
            user_id=actor_id,
            old_values=movement.to_dict(),
            description=f"Adjustment #{movement.id} deleted; stock effect reverted",
        )
        ledger.delete_movement(movement.id, actor_id)

    run_in_transaction(_op, operation="Stock adjustment deletion")
    logger.info("Adjustment %s deleted by user %s", movement_id, actor_id)
