# Overview: Catalog stock ledger; per-title copy counter and derived availability status.

"""
Stock Ledger Invariants (authoritative)

- copies_available >= 0 at all times (validated in the UPDATE predicate and
  backed by a CHECK constraint).
- availability_status == OUT_OF_STOCK <=> copies_available == 0. There is no
  trigger: every mutation below re-derives the status in the same statement.
- Mutations are atomic increments/decrements evaluated by the database, so
  concurrent reservations and releases converge regardless of interleaving.
  Never read a count and write back an absolute value.
- ARCHIVED / DAMAGED are preserved on release; a decrement to zero always
  lands on OUT_OF_STOCK.

Only order_service and borrow_service call into this module.
"""

from __future__ import annotations

from sqlalchemy import case, update

from ..extensions import db
from ..models import Title
from ..models.catalog import AVAILABILITY_AVAILABLE, AVAILABILITY_OUT_OF_STOCK
from ..validation import NotFoundError, StateConflict, ValidationError


class InsufficientStock(StateConflict):
    code = "INSUFFICIENT_STOCK"


def _derived_status(new_count_expr):
    return case(
        (new_count_expr == 0, AVAILABILITY_OUT_OF_STOCK),
        (Title.availability_status == AVAILABILITY_OUT_OF_STOCK, AVAILABILITY_AVAILABLE),
        else_=Title.availability_status,
    )


def _require_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")


def get_stock(title_id: int) -> dict:
    title = db.session.get(Title, title_id)
    if title is None:
        raise NotFoundError(f"Title {title_id} not found")
    return {
        "title_id": title.id,
        "copies_available": title.copies_available,
        "availability_status": title.availability_status,
    }


def reserve_stock(title_id: int, quantity: int) -> None:
    """
    Take `quantity` copies out of the ledger.

    Does not commit; runs inside the caller's transaction.

    Raises:
        ValidationError: non-positive quantity
        NotFoundError: unknown title
        InsufficientStock: fewer than `quantity` copies available
    """
    _require_quantity(quantity)

    new_count = Title.copies_available - quantity
    result = db.session.execute(
        update(Title)
        .where(Title.id == title_id, Title.copies_available >= quantity)
        .values(
            copies_available=new_count,
            availability_status=_derived_status(new_count),
        )
        .execution_options(synchronize_session="fetch")
    )

    if result.rowcount == 1:
        return

    title = db.session.get(Title, title_id)
    if title is None:
        raise NotFoundError(f"Title {title_id} not found")
    raise InsufficientStock(
        f'Insufficient stock for "{title.title}"',
        details={
            "title_id": title_id,
            "requested_quantity": quantity,
            "copies_available": title.copies_available,
        },
    )


def release_stock(title_id: int, quantity: int) -> bool:
    """
    Put `quantity` copies back into the ledger.

    Returns False when the title no longer exists (nothing to restock).
    Does not commit.
    """
    _require_quantity(quantity)

    new_count = Title.copies_available + quantity
    result = db.session.execute(
        update(Title)
        .where(Title.id == title_id)
        .values(
            copies_available=new_count,
            availability_status=_derived_status(new_count),
        )
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1
