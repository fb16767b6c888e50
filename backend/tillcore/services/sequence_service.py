# Overview: Store-scoped transaction number allocation.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Store


class SequenceError(Exception):
    """Raised when a transaction number cannot be allocated."""
    pass


def format_transaction_id(number: int, prefix: str | None = None, suffix: str | None = None, pad: int = 5) -> str:
    """
    Human-readable receipt id: {prefix}-{number:05d}[-{suffix}].

    Numbers wider than the pad are kept whole (TRX-123456), never truncated.
    """
    prefix = (prefix or "").strip() or current_app.config.get("DEFAULT_RECEIPT_PREFIX", "TRX")
    trx_id = f"{prefix}-{number:0{pad}d}"
    suffix = (suffix or "").strip()
    if suffix:
        trx_id = f"{trx_id}-{suffix}"
    return trx_id


def allocate_transaction_id(store_id: int) -> tuple[int, str]:
    """
    Atomically advance the store counter and return (number, transaction_id).

    Single UPDATE ... RETURNING: two settlements can never read the same
    counter value. Runs inside the caller's transaction, so a settlement that
    rolls back releases nothing and leaves no gap; a committed one is never
    reissued.
    """
    stmt = (
        update(Store)
        .where(Store.id == store_id)
        .values(last_transaction_number=Store.last_transaction_number + 1)
        .returning(Store.last_transaction_number, Store.receipt_prefix, Store.receipt_suffix)
    )
    row = db.session.execute(stmt).first()
    if row is None:
        raise SequenceError(f"Store {store_id} not found")

    number, prefix, suffix = row
    return number, format_transaction_id(number, prefix, suffix)


def peek_next_transaction_id(store_id: int) -> str:
    """Preview the next id without allocating it (receipt preview only)."""
    store = db.session.get(Store, store_id)
    if not store:
        raise SequenceError(f"Store {store_id} not found")
    return format_transaction_id((store.last_transaction_number or 0) + 1, store.receipt_prefix, store.receipt_suffix)
