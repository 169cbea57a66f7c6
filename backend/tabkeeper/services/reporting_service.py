# Overview: Read-only summaries over the movement history.

from __future__ import annotations

from collections import defaultdict
from datetime import date

from ..models import LineItemMovement
from ..models.movements import CANCELLED, INFLOW
from ..time_utils import day_bounds, to_utc_z
from .movement_store import list_by_time_range


def daily_sales_summary(day: date) -> dict:
    """
    Sales and payments booked on one UTC calendar day.

    Cancelled sales are counted separately and excluded from totals; units
    sold are aggregated per item across all live sales.
    """
    start, end = day_bounds(day)
    movements = list_by_time_range(start, end)

    sales_count = 0
    cancelled_count = 0
    sales_total = 0
    payments_total = 0
    units: dict[str, dict] = defaultdict(lambda: {"item_name": None, "quantity": 0, "total_cents": 0})

    for movement in movements:
        if isinstance(movement, LineItemMovement):
            if movement.state == CANCELLED:
                cancelled_count += 1
                continue
            sales_count += 1
            sales_total += movement.amount_cents
            for line in movement.lines:
                entry = units[line.item_id]
                entry["item_name"] = line.item_name
                entry["quantity"] += line.quantity
                entry["total_cents"] += line.line_total_cents
        elif movement.kind == INFLOW and movement.state != CANCELLED:
            payments_total += movement.amount_cents

    return {
        "date": day.isoformat(),
        "from": to_utc_z(start),
        "to": to_utc_z(end),
        "sales_count": sales_count,
        "cancelled_sales_count": cancelled_count,
        "sales_total_cents": sales_total,
        "payments_total_cents": payments_total,
        "items": [
            {"item_id": item_id, **entry}
            for item_id, entry in sorted(units.items())
        ],
    }
