# Overview: Movement state machine; the only code that creates, cancels, restores or edits movements.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import CommitConflict, InvalidStateTransition, ValidationError
from ..extensions import db
from ..models import LineItemMovement, Movement, MovementLine, SimpleMovement
from ..models.movements import ACTIVE, CANCELLED, INFLOW, KINDS, MODIFIED, OUTFLOW, RESTORED
from ..time_utils import utcnow
from . import movement_store
from .balance_service import RecalcResult, recalculate
from .concurrency import atomically
from .ledger_service import append_ledger_event
from .stock_service import (
    DESCRIPTION_MAX_LENGTH,
    MISSING_SKIP,
    REASON_MAX_LENGTH,
    STOCK_IN,
    STOCK_OUT,
    apply_deltas,
    compute_delta,
    get_items,
    merge_deltas,
    parse_cents,
    parse_quantity,
    parse_text,
)
"""
Movement lifecycle (authoritative)

    ACTIVE    --cancel--> CANCELLED --restore--> RESTORED
    ACTIVE    --edit----> MODIFIED
    RESTORED / MODIFIED behave exactly like ACTIVE (cancel, edit)

- Nothing is ever deleted; states are audit labels plus balance semantics.
- Cancelling a cancelled movement, or restoring one that is not cancelled,
  is an informational no-op (outcome ALREADY_CANCELLED / NOT_CANCELLED).
- SimpleMovement edits happen in place, with the prior values kept in
  prior_snapshot.
- LineItemMovement (a sale) is NEVER edited in place: the original is
  cancelled and a replacement is created in the same commit, and the stock
  check runs once against the net of both halves.
- Each state change and its stock deltas commit together; the owning
  account is then recalculated as a separate, idempotent step.
"""

CREATED = "CREATED"
DUPLICATE = "DUPLICATE"
OUTCOME_CANCELLED = "CANCELLED"
ALREADY_CANCELLED = "ALREADY_CANCELLED"
OUTCOME_RESTORED = "RESTORED"
NOT_CANCELLED = "NOT_CANCELLED"
OUTCOME_MODIFIED = "MODIFIED"
REPLACED = "REPLACED"

# Outcomes that changed committed state and therefore need a recalculation
CHANGING_OUTCOMES = {CREATED, OUTCOME_CANCELLED, OUTCOME_RESTORED, OUTCOME_MODIFIED, REPLACED}

LIVE_STATES = {ACTIVE, RESTORED, MODIFIED}

DEFAULT_DESCRIPTIONS = {
    "sale": "Sale",
    OUTFLOW: "Purchase",
    INFLOW: "Payment",
}


@dataclass
class MutationResult:
    movement: Movement
    outcome: str
    replacement: Movement | None = None
    recalculation: RecalcResult | None = None
    # True when the account still needs recalculate() (deferred or lost race)
    recalc_pending: bool = False

    @property
    def changed(self) -> bool:
        return self.outcome in CHANGING_OUTCOMES

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "movement": self.movement.to_dict(),
            "replacement": self.replacement.to_dict() if self.replacement is not None else None,
            "recalculation": self.recalculation.to_dict() if self.recalculation is not None else None,
            "recalc_pending": self.recalc_pending,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _require_actor(actor_id: str | None) -> None:
    if not actor_id:
        raise ValidationError("actor_id required")


def _validate_kind(kind: str | None) -> str:
    if kind not in KINDS:
        raise ValidationError(f"kind must be one of {', '.join(KINDS)}")
    return kind


def _validate_amount(amount_cents) -> int:
    return parse_cents(amount_cents, field="amount_cents", allow_zero=False)


def _clean_description(description) -> str | None:
    return parse_text(description, field="description", max_length=DESCRIPTION_MAX_LENGTH)


def _clean_reason(reason) -> str | None:
    return parse_text(reason, field="reason", max_length=REASON_MAX_LENGTH)


def _build_sale_lines(raw_lines: list) -> tuple[list[MovementLine], int]:
    """
    Turn requested lines into MovementLine rows priced from the catalog.

    unit_price_cents defaults to the item's selling price. Returns the lines
    and their total.
    """
    if not raw_lines:
        raise ValidationError("lines must not be empty")

    parsed = []
    for raw in raw_lines:
        item_id = raw.get("item_id") if isinstance(raw, dict) else None
        if not item_id:
            raise ValidationError("item_id required on every line")
        parsed.append((str(item_id), parse_quantity(raw.get("quantity")), raw.get("unit_price_cents")))

    items = get_items(item_id for item_id, _, _ in parsed)

    lines = []
    total = 0
    for number, (item_id, quantity, unit_price) in enumerate(parsed, start=1):
        item = items[item_id]
        if unit_price is None:
            unit_price = item.selling_price_cents
        unit_price = parse_cents(unit_price, field="unit_price_cents")
        line_total = quantity * unit_price
        total += line_total
        lines.append(MovementLine(
            line_number=number,
            item_id=item.id,
            item_name=item.name,
            quantity=quantity,
            unit_price_cents=unit_price,
            line_total_cents=line_total,
        ))
    return lines, total


def _sale_amount(lines_total: int, amount_cents) -> int:
    """A sale's amount is its line total; a supplied amount must agree."""
    if amount_cents is None:
        if lines_total <= 0:
            raise ValidationError("sale total must be positive")
        return lines_total
    amount = _validate_amount(amount_cents)
    if amount != lines_total:
        raise ValidationError(
            "amount_cents does not match the sum of line totals",
            details={"amount_cents": amount, "lines_total_cents": lines_total},
        )
    return amount


def _recalculate_after(result: MutationResult) -> MutationResult:
    if not result.changed:
        return result

    account_id = result.movement.account_id
    if not current_app.config.get("LEDGER_RECALC_INLINE", True):
        result.recalc_pending = True
        return result

    try:
        result.recalculation = recalculate(account_id)
    except CommitConflict:
        # The mutation itself is committed; only the derived balance lags.
        current_app.logger.warning(
            "Recalculation of account %s deferred after %s of movement %s",
            account_id,
            result.outcome,
            result.movement.id,
        )
        result.recalc_pending = True
    return result


def _mark_cancelled(movement: Movement, *, actor_id: str, reason: str | None) -> None:
    movement.state = CANCELLED
    movement.cancelled_at = utcnow()
    movement.cancelled_by = actor_id
    movement.cancel_reason = reason


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def create_movement(
    *,
    account_id: str,
    kind: str,
    actor_id: str,
    amount_cents: int | None = None,
    description: str | None = None,
    lines: list[dict] | None = None,
    actor_name: str | None = None,
    occurred_at=None,
    account_name: str | None = None,
    idempotency_key: str | None = None,
) -> MutationResult:
    """
    Record a new movement.

    With `lines` it is a sale: stock for every line is checked and taken in
    the same commit as the movement. Without, it is a simple amount movement.
    A repeated idempotency_key returns the movement it first created.
    """
    _require_actor(actor_id)
    _validate_kind(kind)
    if lines is not None:
        if not lines:
            raise ValidationError("lines must not be empty")
        if kind != OUTFLOW:
            raise ValidationError("only OUTFLOW movements can carry lines")
    else:
        _validate_amount(amount_cents)
    description = _clean_description(description)
    account_name = parse_text(account_name, field="account_name", max_length=DESCRIPTION_MAX_LENGTH)
    occurred_dt = movement_store.resolve_occurred_at(occurred_at)

    def _op():
        if idempotency_key:
            existing = movement_store.find_by_idempotency_key(idempotency_key)
            if existing is not None:
                if existing.account_id != account_id:
                    raise ValidationError(
                        "idempotency_key already used for another account",
                        details={"idempotency_key": idempotency_key},
                    )
                return MutationResult(movement=existing, outcome=DUPLICATE)

        common = dict(
            account_id=account_id,
            kind=kind,
            occurred_at=occurred_dt,
            actor_id=actor_id,
            actor_name=actor_name,
            balance_after_cents=0,
            idempotency_key=idempotency_key,
        )
        if lines is not None:
            sale_lines, total = _build_sale_lines(lines)
            movement = LineItemMovement(
                amount_cents=_sale_amount(total, amount_cents),
                description=description or DEFAULT_DESCRIPTIONS["sale"],
                lines=sale_lines,
                **common,
            )
        else:
            movement = SimpleMovement(
                amount_cents=amount_cents,
                description=description or DEFAULT_DESCRIPTIONS[kind],
                **common,
            )

        movement_store.append(movement, account_name=account_name, require_enabled=True)
        if isinstance(movement, LineItemMovement):
            apply_deltas(compute_delta(movement.lines, STOCK_OUT))

        append_ledger_event(
            event_type="movement.created",
            entity_type="movement",
            entity_id=movement.id,
            account_id=movement.account_id,
            actor_id=actor_id,
            occurred_at=movement.occurred_at,
            note=movement.description,
            payload={"kind": movement.kind, "amount_cents": movement.amount_cents, "shape": movement.shape},
        )
        return MutationResult(movement=movement, outcome=CREATED)

    return _recalculate_after(atomically(_op, label="create movement"))


def cancel_movement(movement_id: int, *, actor_id: str, reason: str | None = None) -> MutationResult:
    """
    Void a movement. A sale gives its units back to stock in the same commit;
    lines whose item has since been deleted are skipped with a warning.
    """
    _require_actor(actor_id)
    reason = _clean_reason(reason)

    def _op():
        movement = movement_store.get(movement_id, lock=True)
        if movement.state == CANCELLED:
            return MutationResult(movement=movement, outcome=ALREADY_CANCELLED)

        if isinstance(movement, LineItemMovement):
            apply_deltas(compute_delta(movement.lines, STOCK_IN), missing=MISSING_SKIP)

        _mark_cancelled(movement, actor_id=actor_id, reason=reason)
        db.session.flush()

        append_ledger_event(
            event_type="movement.cancelled",
            entity_type="movement",
            entity_id=movement.id,
            account_id=movement.account_id,
            actor_id=actor_id,
            occurred_at=movement.cancelled_at,
            note=reason,
        )
        return MutationResult(movement=movement, outcome=OUTCOME_CANCELLED)

    return _recalculate_after(atomically(_op, label="cancel movement"))


def restore_movement(movement_id: int, *, actor_id: str) -> MutationResult:
    """
    Undo a cancellation. A sale takes its units out of stock again and fails
    with InsufficientStock if they were sold elsewhere meanwhile.
    """
    _require_actor(actor_id)

    def _op():
        movement = movement_store.get(movement_id, lock=True)
        if movement.state != CANCELLED:
            return MutationResult(movement=movement, outcome=NOT_CANCELLED)
        if movement.replaced_by_movement_id is not None:
            raise InvalidStateTransition(
                "Movement was replaced by an edit; cancel the replacement instead",
                details={
                    "movement_id": movement.id,
                    "replaced_by_movement_id": movement.replaced_by_movement_id,
                },
            )

        if isinstance(movement, LineItemMovement):
            apply_deltas(compute_delta(movement.lines, STOCK_OUT), missing=MISSING_SKIP)

        movement.state = RESTORED
        movement.cancelled_at = None
        movement.cancelled_by = None
        movement.cancel_reason = None
        movement.restored_at = utcnow()
        movement.restored_by = actor_id
        db.session.flush()

        append_ledger_event(
            event_type="movement.restored",
            entity_type="movement",
            entity_id=movement.id,
            account_id=movement.account_id,
            actor_id=actor_id,
            occurred_at=movement.restored_at,
        )
        return MutationResult(movement=movement, outcome=OUTCOME_RESTORED)

    return _recalculate_after(atomically(_op, label="restore movement"))


def edit_movement(
    movement_id: int,
    *,
    actor_id: str,
    reason: str | None = None,
    kind: str | None = None,
    amount_cents: int | None = None,
    description: str | None = None,
    lines: list[dict] | None = None,
    actor_name: str | None = None,
) -> MutationResult:
    """
    Change a live movement.

    SimpleMovement: kind/amount/description updated in place, state MODIFIED.
    LineItemMovement: cancel-and-recreate with the new `lines`.
    """
    _require_actor(actor_id)
    reason = _clean_reason(reason)
    description = _clean_description(description)

    def _op():
        movement = movement_store.get(movement_id, lock=True)
        if movement.state not in LIVE_STATES:
            raise InvalidStateTransition(
                f"Cannot edit a {movement.state} movement",
                details={"movement_id": movement.id, "state": movement.state},
            )

        if isinstance(movement, LineItemMovement):
            return _replace_sale(
                movement,
                lines=lines,
                kind=kind,
                amount_cents=amount_cents,
                description=description,
                reason=reason,
                actor_id=actor_id,
                actor_name=actor_name,
            )

        if lines is not None:
            raise ValidationError("lines can only be edited on sales")
        return _edit_simple(
            movement,
            kind=kind,
            amount_cents=amount_cents,
            description=description,
            reason=reason,
            actor_id=actor_id,
        )

    return _recalculate_after(atomically(_op, label="edit movement"))


def _edit_simple(
    movement: SimpleMovement,
    *,
    kind: str | None,
    amount_cents: int | None,
    description: str | None,
    reason: str | None,
    actor_id: str,
) -> MutationResult:
    changes = {}
    if kind is not None and _validate_kind(kind) != movement.kind:
        changes["kind"] = kind
    if amount_cents is not None and _validate_amount(amount_cents) != movement.amount_cents:
        changes["amount_cents"] = amount_cents
    if description is not None and description != movement.description:
        changes["description"] = description
    if not changes:
        raise ValidationError("No changes to apply", details={"movement_id": movement.id})

    before = movement.snapshot()
    for field, value in changes.items():
        setattr(movement, field, value)
    movement.state = MODIFIED
    movement.prior_snapshot = before
    movement.modify_reason = reason
    movement.modified_at = utcnow()
    movement.modified_by = actor_id
    db.session.flush()

    append_ledger_event(
        event_type="movement.modified",
        entity_type="movement",
        entity_id=movement.id,
        account_id=movement.account_id,
        actor_id=actor_id,
        occurred_at=movement.modified_at,
        note=reason,
        payload={"before": before, "changes": changes},
    )
    return MutationResult(movement=movement, outcome=OUTCOME_MODIFIED)


def _line_signature(lines) -> list[tuple]:
    return [(line.item_id, line.quantity, line.unit_price_cents) for line in lines]


def _replace_sale(
    original: LineItemMovement,
    *,
    lines: list[dict] | None,
    kind: str | None,
    amount_cents: int | None,
    description: str | None,
    reason: str | None,
    actor_id: str,
    actor_name: str | None,
) -> MutationResult:
    if not lines:
        raise ValidationError("lines required to edit a sale")
    if kind is not None and kind != original.kind:
        raise ValidationError("the kind of a sale cannot change")

    new_lines, total = _build_sale_lines(lines)
    amount = _sale_amount(total, amount_cents)
    if _line_signature(new_lines) == _line_signature(original.lines) and (
        description is None or description == original.description
    ):
        raise ValidationError("No changes to apply", details={"movement_id": original.id})

    # One check against the net effect: old lines back in, new lines out.
    apply_deltas(
        merge_deltas(
            compute_delta(original.lines, STOCK_IN),
            compute_delta(new_lines, STOCK_OUT),
        ),
        missing=MISSING_SKIP,
    )

    replacement = LineItemMovement(
        account_id=original.account_id,
        kind=original.kind,
        amount_cents=amount,
        description=description or original.description,
        occurred_at=original.occurred_at,
        actor_id=actor_id,
        actor_name=actor_name,
        balance_after_cents=0,
        replaces_movement_id=original.id,
        lines=new_lines,
    )
    movement_store.append(replacement)

    system_reason = f"Replaced by movement #{replacement.id}"
    if reason:
        system_reason = f"{system_reason}: {reason}"
    _mark_cancelled(original, actor_id=actor_id, reason=system_reason[:255])
    original.replaced_by_movement_id = replacement.id
    db.session.flush()

    append_ledger_event(
        event_type="movement.cancelled",
        entity_type="movement",
        entity_id=original.id,
        account_id=original.account_id,
        actor_id=actor_id,
        occurred_at=original.cancelled_at,
        note=system_reason,
    )
    append_ledger_event(
        event_type="movement.replaced",
        entity_type="movement",
        entity_id=replacement.id,
        account_id=replacement.account_id,
        actor_id=actor_id,
        occurred_at=original.cancelled_at,
        note=reason,
        payload={"replaces_movement_id": original.id, "amount_cents": amount},
    )
    return MutationResult(movement=original, outcome=REPLACED, replacement=replacement)
