# Overview: Loyalty ledger: accrual, in-sale and manual redemption, balance reads.

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..models import Customer, LoyaltyLedgerEntry, LoyaltyProgramConfig
from ..models.customers import LEDGER_EARNED, LEDGER_REDEEMED
from ..money import to_decimal
from tillcore.time_utils import utcnow
from .concurrency import run_with_retry
from .customer_service import find_customer_by_phone, resolve_customer
"""
Loyalty Ledger Invariants (authoritative)

- loyalty_logs is append-only; a customer's true balance is SUM(points).
- Customer.points is a cache. It is only changed by
    UPDATE customers SET points = points + :delta
  executed in the same transaction as the matching ledger insert, so the cache
  and the ledger commit or roll back together.
- Manual redemption checks run in this order and reject before any write:
    InvalidAmount -> CustomerNotFound -> BelowMinimumBalance -> InsufficientBalance
  and the debit itself is a conditional UPDATE (points >= :requested), so a
  concurrent redemption cannot overdraw.
- In-sale redemption debits the fixed quantum (LOYALTY_REDEMPTION_POINTS) with the
  same conditional UPDATE, before the sale row is written, and
  grants the fixed discount (LOYALTY_REDEMPTION_DISCOUNT). Manual redemption does
  not consult redemption_rate; the reward's value is staff's call.
"""

CODE_CUSTOMER_NOT_FOUND = "CustomerNotFound"
CODE_BELOW_MINIMUM = "BelowMinimumBalance"
CODE_INSUFFICIENT = "InsufficientBalance"
CODE_INVALID_AMOUNT = "InvalidAmount"
CODE_PROGRAM_DISABLED = "ProgramDisabled"


class RedemptionRejected(Exception):
    """A redemption failed its preconditions. Nothing was written."""
    def __init__(self, code: str, message: str, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


@dataclass(frozen=True)
class LoyaltySettings:
    enabled: bool
    earn_rate: Decimal
    redemption_rate: Decimal
    min_redemption_points: int


@dataclass
class AccrualResult:
    points_earned: int
    points_redeemed: int
    balance: int
    entries: list[LoyaltyLedgerEntry]


def get_program_settings(store_id: int) -> LoyaltySettings:
    """Store's program config, falling back to defaults when none is saved."""
    cfg = db.session.query(LoyaltyProgramConfig).filter_by(store_id=store_id).first()
    if cfg is None:
        return LoyaltySettings(
            enabled=True,
            earn_rate=Decimal("1"),
            redemption_rate=Decimal("0.05"),
            min_redemption_points=100,
        )
    return LoyaltySettings(
        enabled=bool(cfg.enabled),
        earn_rate=Decimal(cfg.earn_rate),
        redemption_rate=Decimal(cfg.redemption_rate),
        min_redemption_points=int(cfg.min_redemption_points),
    )


def redemption_quantum() -> tuple[int, Decimal]:
    """(points debited, discount granted) for one in-sale redemption."""
    points = int(current_app.config.get("LOYALTY_REDEMPTION_POINTS", 100))
    discount = to_decimal(current_app.config.get("LOYALTY_REDEMPTION_DISCOUNT", "5.00"), field="LOYALTY_REDEMPTION_DISCOUNT")
    return points, discount


def points_for_amount(amount: Decimal, earn_rate: Decimal) -> int:
    """floor(amount * earn_rate); never negative."""
    if amount <= 0 or earn_rate <= 0:
        return 0
    return max(0, math.floor(amount * earn_rate))


def _append_entry(
    customer: Customer,
    points: int,
    entry_type: str,
    description: str | None,
    *,
    sale_id: int | None = None,
    employee_id: str | None = None,
) -> LoyaltyLedgerEntry:
    entry = LoyaltyLedgerEntry(
        store_id=customer.store_id,
        customer_id=customer.id,
        points=points,
        type=entry_type,
        description=description,
        sale_id=sale_id,
        employee_id=employee_id,
    )
    db.session.add(entry)
    return entry


def _apply_delta(customer_id: int, delta: int, *, guard_balance: int | None = None) -> int | None:
    """
    Atomic points += delta. With guard_balance, only applies when points >= guard_balance.

    Returns the new cached balance, or None when the guard rejected the update.
    """
    stmt = (
        update(Customer)
        .where(Customer.id == customer_id)
        .values(points=Customer.points + delta)
        .returning(Customer.points)
    )
    if guard_balance is not None:
        stmt = stmt.where(Customer.points >= guard_balance)
    return db.session.execute(stmt).scalar_one_or_none()


def check_in_sale_redemption(customer: Customer | None, settings: LoyaltySettings) -> int:
    """
    Validate an in-sale redemption request before anything is written.

    Returns the quantum of points that will be debited.
    """
    quantum, _ = redemption_quantum()
    if customer is None:
        raise RedemptionRejected(CODE_CUSTOMER_NOT_FOUND, "Redeeming points requires a customer")
    if not settings.enabled:
        raise RedemptionRejected(CODE_PROGRAM_DISABLED, "Loyalty program is disabled")
    balance = customer.points or 0
    if balance < settings.min_redemption_points:
        raise RedemptionRejected(
            CODE_BELOW_MINIMUM,
            f"Customer needs at least {settings.min_redemption_points} points to redeem",
            details={"points": balance, "min_redemption_points": settings.min_redemption_points},
        )
    if balance < quantum:
        raise RedemptionRejected(
            CODE_INSUFFICIENT,
            "Insufficient points balance",
            details={"points": balance, "requested": quantum},
        )
    return quantum


def debit_in_sale_redemption(customer: Customer | None, settings: LoyaltySettings) -> tuple[int, int]:
    """
    Debit the redemption quantum ahead of the sale row.

    The UPDATE only applies while points >= max(quantum, minimum), so two
    checkouts redeeming against the same balance cannot overdraw it; the loser
    gets RedemptionRejected before anything else is written. The matching
    ledger entry is added by record_in_sale_redemption in the same transaction
    once the sale exists.

    Returns (points debited, new cached balance). Does not commit.
    """
    quantum = check_in_sale_redemption(customer, settings)
    guard = max(quantum, settings.min_redemption_points)
    new_balance = _apply_delta(customer.id, -quantum, guard_balance=guard)
    if new_balance is None:
        raise RedemptionRejected(CODE_INSUFFICIENT, "Insufficient points balance", details={"requested": quantum})
    return quantum, new_balance


def record_in_sale_redemption(
    customer: Customer,
    points: int,
    *,
    sale_id: int,
    transaction_id: str,
    employee_id: str | None = None,
) -> LoyaltyLedgerEntry:
    _, discount = redemption_quantum()
    return _append_entry(
        customer, -points, LEDGER_REDEEMED,
        f"Redeemed {points} points for {discount} discount on {transaction_id}",
        sale_id=sale_id, employee_id=employee_id,
    )


def apply_sale_loyalty(
    customer: Customer,
    *,
    settings: LoyaltySettings,
    total_amount: Decimal,
    sale_id: int,
    transaction_id: str,
    employee_id: str | None = None,
    balance: int | None = None,
) -> AccrualResult:
    """
    Post the `earned` entry for floor(total_amount * earn_rate) and update
    visit aggregates. Any redemption was already debited by
    debit_in_sale_redemption; `balance` is the cached balance after it.
    Does not commit.
    """
    entries: list[LoyaltyLedgerEntry] = []
    points_earned = 0
    balance = balance if balance is not None else (customer.points or 0)

    if settings.enabled:
        points_earned = points_for_amount(total_amount, settings.earn_rate)
        if points_earned:
            balance = _apply_delta(customer.id, points_earned)
            entries.append(_append_entry(
                customer, points_earned, LEDGER_EARNED,
                f"Earned on {transaction_id}",
                sale_id=sale_id, employee_id=employee_id,
            ))

    db.session.execute(
        update(Customer)
        .where(Customer.id == customer.id)
        .values(
            total_spent=Customer.total_spent + total_amount,
            total_visits=Customer.total_visits + 1,
            last_visit=utcnow(),
        )
    )
    db.session.flush()

    return AccrualResult(points_earned=points_earned, points_redeemed=0, balance=balance, entries=entries)


def redeem_points(
    store_id: int,
    phone: str | None,
    points,
    reason: str | None = None,
    *,
    employee_id: str | None = None,
) -> tuple[Customer, LoyaltyLedgerEntry]:
    """
    Staff-initiated redemption against a non-purchase reward.

    Rejections raise RedemptionRejected and leave balance and ledger untouched.
    """
    if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
        raise RedemptionRejected(CODE_INVALID_AMOUNT, "points must be a positive integer")

    def _op():
        customer = find_customer_by_phone(store_id, phone)
        if customer is None:
            raise RedemptionRejected(CODE_CUSTOMER_NOT_FOUND, "Customer not found", details={"phone": phone})

        settings = get_program_settings(store_id)
        balance = customer.points or 0

        if balance < settings.min_redemption_points:
            raise RedemptionRejected(
                CODE_BELOW_MINIMUM,
                f"Customer needs at least {settings.min_redemption_points} points to redeem",
                details={"points": balance, "min_redemption_points": settings.min_redemption_points},
            )
        if points > balance:
            raise RedemptionRejected(
                CODE_INSUFFICIENT,
                "Insufficient points balance",
                details={"points": balance, "requested": points},
            )

        guard = max(points, settings.min_redemption_points)
        new_balance = _apply_delta(customer.id, -points, guard_balance=guard)
        if new_balance is None:
            # Balance moved between the read and the guarded update
            raise RedemptionRejected(CODE_INSUFFICIENT, "Insufficient points balance", details={"requested": points})

        entry = _append_entry(
            customer, -points, LEDGER_REDEEMED,
            (reason or "").strip() or "Manual redemption",
            employee_id=employee_id,
        )
        db.session.commit()
        current_app.logger.info(
            "Redeemed %s points for customer %s (store %s); balance %s", points, customer.id, store_id, new_balance,
        )
        return customer, entry

    try:
        return run_with_retry(_op)
    except RedemptionRejected:
        db.session.rollback()
        raise


def ledger_balance(customer_id: int) -> int:
    """Race-safe balance: SUM of the customer's ledger entries."""
    total = (
        db.session.query(func.coalesce(func.sum(LoyaltyLedgerEntry.points), 0))
        .filter(LoyaltyLedgerEntry.customer_id == customer_id)
        .scalar()
    )
    return int(total or 0)


def list_entries(customer_id: int, *, limit: int = 100) -> list[LoyaltyLedgerEntry]:
    return (
        db.session.query(LoyaltyLedgerEntry)
        .filter_by(customer_id=customer_id)
        .order_by(LoyaltyLedgerEntry.created_at.desc(), LoyaltyLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )


def program_stats(store_id: int) -> dict:
    issued, redeemed = (
        db.session.query(
            func.coalesce(func.sum(LoyaltyLedgerEntry.points).filter(LoyaltyLedgerEntry.type == LEDGER_EARNED), 0),
            func.coalesce(func.sum(LoyaltyLedgerEntry.points).filter(LoyaltyLedgerEntry.type == LEDGER_REDEEMED), 0),
        )
        .filter(LoyaltyLedgerEntry.store_id == store_id)
        .one()
    )
    members = db.session.query(func.count(Customer.id)).filter(Customer.store_id == store_id).scalar()
    return {
        "points_issued": int(issued or 0),
        "points_redeemed": -int(redeemed or 0),
        "members": int(members or 0),
    }


def lookup_customer(store_id: int, phone: str | None, *, name: str | None = None, create: bool = False) -> Customer | None:
    """
    Customer lookup for the loyalty screen.

    With create=True an unknown phone is registered with zero points and the
    row is committed; otherwise unknown phones return None.
    """
    if not create:
        return find_customer_by_phone(store_id, phone)

    resolution = resolve_customer(store_id, phone, name)
    if resolution.is_new_customer:
        db.session.commit()
        current_app.logger.info("Registered loyalty customer %s for store %s", resolution.customer.id, store_id)
    return resolution.customer
