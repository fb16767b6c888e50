"""
Sales administration: history reads and owner-only deletion.

Settled sales are immutable. Deletion is the only mutation and it removes the
sale and its line items together; ledger entries that reference the sale are
kept (their sale_id is a plain integer), so deleting a sale never moves a
customer's balance.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Sale
from tillcore.time_utils import utc_day_bounds
from .concurrency import lock_for_update, run_with_retry


class SaleError(Exception):
    """Raised for sale administration errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleNotFound(SaleError):
    pass


class SaleDeleteForbidden(SaleError):
    pass


def get_sale(store_id: int, sale_id: int) -> Sale | None:
    return db.session.query(Sale).filter_by(id=sale_id, store_id=store_id).first()


def list_sales(
    store_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    customer_id: int | None = None,
    payment_method: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Sale], int]:
    """Sales history, newest first. Returns (page, total count)."""
    q = db.session.query(Sale).filter(Sale.store_id == store_id)
    if start is not None:
        q = q.filter(Sale.created_at >= start)
    if end is not None:
        q = q.filter(Sale.created_at < end)
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    if payment_method:
        q = q.filter(Sale.payment_method == payment_method.lower())

    total = q.count()
    sales = q.order_by(Sale.created_at.desc(), Sale.id.desc()).offset(offset).limit(limit).all()
    return sales, total


def count_sales_today(store_id: int) -> int:
    """Number of sales since UTC midnight; feeds the owner's {TotalOrders} alert."""
    start, end = utc_day_bounds()
    return (
        db.session.query(func.count(Sale.id))
        .filter(Sale.store_id == store_id, Sale.created_at >= start, Sale.created_at < end)
        .scalar()
    ) or 0


def delete_sale(store_id: int, sale_id: int, *, is_owner: bool, employee_id: str | None = None) -> None:
    """
    Delete a sale and its line items. Store owner only.

    Stock and loyalty are not reversed: deletion removes a record, it is not a
    refund.
    """
    if not is_owner:
        raise SaleDeleteForbidden("Only the store owner can delete sales", details={"sale_id": sale_id})

    def _op():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id, store_id=store_id)).first()
        if not sale:
            raise SaleNotFound("Sale not found", details={"sale_id": sale_id})

        transaction_id = sale.transaction_id
        # Load the items so the ORM cascade removes them even without FK enforcement
        item_count = len(sale.items)
        db.session.delete(sale)
        db.session.commit()
        current_app.logger.info(
            "Sale %s (%s, %s items) deleted by %s", sale_id, transaction_id, item_count, employee_id or "owner",
        )

    try:
        run_with_retry(_op)
    except SaleError:
        db.session.rollback()
        raise
