# Overview: Detect and repair drift between cached balances and the loyalty ledger; report orphan sales.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..models import Customer, LoyaltyLedgerEntry, Sale, SaleLineItem
from .concurrency import run_with_retry


@dataclass
class BalanceDrift:
    customer_id: int
    store_id: int
    phone: str
    cached_points: int
    ledger_points: int

    @property
    def delta(self) -> int:
        return self.ledger_points - self.cached_points

    def to_dict(self) -> dict:
        return {
            "customer_id": self.customer_id,
            "store_id": self.store_id,
            "phone": self.phone,
            "cached_points": self.cached_points,
            "ledger_points": self.ledger_points,
            "delta": self.delta,
        }


def find_balance_drift(store_id: int | None = None) -> list[BalanceDrift]:
    ledger = (
        db.session.query(
            LoyaltyLedgerEntry.customer_id.label("customer_id"),
            func.sum(LoyaltyLedgerEntry.points).label("total"),
        )
        .group_by(LoyaltyLedgerEntry.customer_id)
        .subquery()
    )
    ledger_total = func.coalesce(ledger.c.total, 0)

    q = (
        db.session.query(Customer, ledger_total)
        .outerjoin(ledger, ledger.c.customer_id == Customer.id)
        .filter(Customer.points != ledger_total)
    )
    if store_id is not None:
        q = q.filter(Customer.store_id == store_id)

    return [
        BalanceDrift(
            customer_id=customer.id,
            store_id=customer.store_id,
            phone=customer.phone,
            cached_points=customer.points,
            ledger_points=int(total or 0),
        )
        for customer, total in q.order_by(Customer.id.asc()).all()
    ]


def reconcile_customer_balances(store_id: int | None = None, *, fix: bool = False) -> list[BalanceDrift]:
    """
    Compare each customer's cached points with SUM(ledger).

    With fix=True the cache is reset to the ledger total. The ledger itself is
    never modified.
    """
    def _op():
        drift = find_balance_drift(store_id)
        if not fix or not drift:
            return drift

        for item in drift:
            ledger_sum = (
                db.session.query(func.coalesce(func.sum(LoyaltyLedgerEntry.points), 0))
                .filter(LoyaltyLedgerEntry.customer_id == Customer.id)
                .scalar_subquery()
            )
            db.session.execute(
                update(Customer)
                .where(Customer.id == item.customer_id)
                .values(points=ledger_sum)
                .execution_options(synchronize_session=False)
            )
            current_app.logger.warning(
                "Repaired points drift for customer %s: cached %s -> ledger %s",
                item.customer_id, item.cached_points, item.ledger_points,
            )
        db.session.commit()
        db.session.expire_all()
        return drift

    return run_with_retry(_op)


def find_orphan_sales(store_id: int | None = None) -> list[Sale]:
    """Sales with no line items (left behind by a failed line-item write)."""
    has_items = db.session.query(SaleLineItem.id).filter(SaleLineItem.sale_id == Sale.id).exists()
    q = db.session.query(Sale).filter(~has_items)
    if store_id is not None:
        q = q.filter(Sale.store_id == store_id)
    return q.order_by(Sale.created_at.asc(), Sale.id.asc()).all()
