"""
Sale settlement: turns a confirmed cart into a durable sale.

Pipeline (one database transaction, SAVEPOINT per non-critical step):
  0. idempotency replay        -> existing sale returned, nothing written
  1. customer resolution       -> failure degrades to guest checkout
     redemption debit          -> guarded UPDATE; RedemptionRejected before
                                  the sale row is written
  2. transaction id + sale row -> failure is fatal (SaleWriteFailed)
  3. line items                -> failure leaves an orphan sale (warning)
  4. stock, per line           -> failure per line (warning); oversell with
                                  negative stock disallowed is fatal
  5. counter                   -> advanced atomically in step 2
  6. loyalty + visit stats     -> failure leaves balance unmoved (warning)
  7. commit, then messages     -> dispatch failures are warnings only

Only SaleWriteFailed, InsufficientStock, RedemptionRejected and
ValidationError reach the operator as errors. Everything else is reported in
SettlementResult.warnings so a degraded sale is never shown as a clean one.
With SETTLEMENT_STRICT any degraded step aborts the whole settlement.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Customer, Sale, SaleLineItem, Store
from ..models.communications import NOTIFICATION_ORDER
from ..models.sales import SALE_STATUS_COMPLETED
from ..money import money_str
from ..validation import ValidationError, optional_str
from .cart_service import build_cart_lines
from .concurrency import run_with_retry
from .customer_service import CustomerResolution, resolve_customer
from .inventory_service import InsufficientStockError, InventoryError, StockAdjustment, adjust_for_sale
from .loyalty_service import (
    RedemptionRejected,
    apply_sale_loyalty,
    debit_in_sale_redemption,
    get_program_settings,
    record_in_sale_redemption,
    redemption_quantum,
)
from .notification_service import (
    KIND_LOW_STOCK,
    KIND_SALE,
    KIND_WELCOME,
    NotificationPayload,
    OutboundMessage,
    create_notification,
    deliver_messages,
    end_read_transaction,
    plan_notification,
)
from .pricing_service import PriceBreakdown, TaxPolicy, calculate_totals, charged_amounts
from .sequence_service import allocate_transaction_id


WARNING_LINE_ITEMS = "LineItemWriteFailed"
WARNING_STOCK = "StockUpdateFailed"
WARNING_CUSTOMER_LOOKUP = "CustomerLookupFailed"
WARNING_LOYALTY = "LoyaltyUpdateFailed"
WARNING_NOTIFICATION = "NotificationDispatchFailed"


class SettlementError(Exception):
    """Raised when a settlement cannot be recorded. Nothing was committed."""
    code = "SettlementFailed"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleWriteFailed(SettlementError):
    code = "SaleWriteFailed"


class InsufficientStock(SettlementError):
    code = "InsufficientStock"


@dataclass
class SettlementRequest:
    store_id: int
    items: list
    payment_method: str
    employee_id: str | None = None
    staff_name: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    redeem_points: bool = False
    idempotency_key: str | None = None
    payment_reference: str | None = None


@dataclass
class SettlementWarning:
    code: str
    message: str
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


@dataclass
class SettlementResult:
    sale: Sale
    transaction_id: str
    totals: PriceBreakdown | None = None
    warnings: list[SettlementWarning] = field(default_factory=list)
    points_earned: int = 0
    points_redeemed: int = 0
    points_balance: int | None = None
    is_new_customer: bool = False
    replayed: bool = False
    low_stock: list[StockAdjustment] = field(default_factory=list)

    @property
    def sale_id(self) -> int:
        return self.sale.id

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale.id,
            "transaction_id": self.transaction_id,
            "sale": self.sale.to_dict(include_items=True),
            "totals": self.totals.to_dict() if self.totals else None,
            "warnings": [w.to_dict() for w in self.warnings],
            "points_earned": self.points_earned,
            "points_redeemed": self.points_redeemed,
            "points_balance": self.points_balance,
            "is_new_customer": self.is_new_customer,
            "replayed": self.replayed,
            "low_stock": [
                {"product_id": adj.product_id, "stock": adj.new_stock} for adj in self.low_stock
            ],
        }


def _degrade(warnings: list[SettlementWarning], code: str, message: str, exc: Exception, details: dict | None = None) -> None:
    """Record a non-fatal step failure, or abort when running strict."""
    current_app.logger.warning("Settlement step degraded (%s): %s: %s", code, message, exc)
    if current_app.config.get("SETTLEMENT_STRICT", False):
        raise SaleWriteFailed(message, details={"step": code, **(details or {})}) from exc
    warnings.append(SettlementWarning(code=code, message=message, details=details or {}))


def _normalize_payment_method(value) -> str:
    method = optional_str(value, "payment_method", max_length=32)
    if not method:
        raise ValidationError("payment_method is required")
    return method.lower()


def find_sale_by_idempotency_key(store_id: int, key: str | None) -> Sale | None:
    if not key:
        return None
    return db.session.query(Sale).filter_by(store_id=store_id, idempotency_key=key).first()


def _replay(sale: Sale) -> SettlementResult:
    balance = None
    if sale.customer_id:
        customer = db.session.get(Customer, sale.customer_id)
        balance = customer.points if customer else None
    return SettlementResult(
        sale=sale,
        transaction_id=sale.transaction_id,
        points_earned=sale.points_earned,
        points_redeemed=sale.points_redeemed,
        points_balance=balance,
        replayed=True,
    )


def quote_sale(store_id: int, items, *, redeem_points: bool = False) -> PriceBreakdown:
    """Price a cart without writing anything (checkout preview)."""
    store = db.session.get(Store, store_id)
    if store is None:
        raise ValidationError("Store not found")
    lines = build_cart_lines(store_id, items)
    _, discount = redemption_quantum()
    return calculate_totals(lines, TaxPolicy.from_store(store), redeem_points=redeem_points, redemption_discount=discount)


def _resolve_customer_step(req: SettlementRequest, warnings: list[SettlementWarning]) -> CustomerResolution:
    try:
        return resolve_customer(req.store_id, req.customer_phone, req.customer_name)
    except ValidationError:
        raise
    except SQLAlchemyError as exc:
        _degrade(warnings, WARNING_CUSTOMER_LOOKUP, "Customer lookup failed; settled as guest", exc)
        return CustomerResolution(customer=None, is_new_customer=False)


def _settle_in_transaction(req: SettlementRequest, payment_method: str) -> SettlementResult:
    existing = find_sale_by_idempotency_key(req.store_id, req.idempotency_key)
    if existing is not None:
        return _replay(existing)

    store = db.session.get(Store, req.store_id)
    if store is None:
        raise ValidationError("Store not found")

    lines = build_cart_lines(req.store_id, req.items)
    if not lines:
        raise ValidationError("Cart is empty")

    warnings: list[SettlementWarning] = []

    # Step 1: customer; is_new_customer is fixed before any point mutation
    resolution = _resolve_customer_step(req, warnings)
    customer = resolution.customer
    settings = get_program_settings(req.store_id)

    # Redemption is debited before the sale row; a rejection leaves nothing written
    points_redeemed = 0
    balance = customer.points if customer else None
    if req.redeem_points:
        points_redeemed, balance = debit_in_sale_redemption(customer, settings)

    _, discount = redemption_quantum()
    breakdown = calculate_totals(
        lines,
        TaxPolicy.from_store(store),
        redeem_points=req.redeem_points,
        redemption_discount=discount,
    )
    charged = charged_amounts(breakdown)

    # Step 2: transaction id + sale row (fatal on failure)
    try:
        _, transaction_id = allocate_transaction_id(req.store_id)
        sale = Sale(
            store_id=req.store_id,
            transaction_id=transaction_id,
            idempotency_key=req.idempotency_key,
            payment_method=payment_method,
            payment_reference=req.payment_reference,
            employee_id=req.employee_id,
            customer_id=customer.id if customer else None,
            status=SALE_STATUS_COMPLETED,
            points_earned=0,
            points_redeemed=points_redeemed,
            **charged,
        )
        db.session.add(sale)
        db.session.flush()
        if points_redeemed:
            record_in_sale_redemption(
                customer, points_redeemed,
                sale_id=sale.id, transaction_id=transaction_id, employee_id=req.employee_id,
            )
            db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        winner = find_sale_by_idempotency_key(req.store_id, req.idempotency_key)
        if winner is not None:
            return _replay(winner)
        raise SaleWriteFailed("Sale could not be recorded", details={"reason": str(exc.orig)}) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise SaleWriteFailed("Sale could not be recorded", details={"reason": str(exc)}) from exc

    # Step 3: line items
    try:
        with db.session.begin_nested():
            for line in lines:
                db.session.add(SaleLineItem(
                    sale_id=sale.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price_at_sale=line.unit_price,
                    subtotal=line.line_total,
                ))
    except SQLAlchemyError as exc:
        _degrade(warnings, WARNING_LINE_ITEMS, "Sale items were not recorded", exc, {"sale_id": sale.id})

    # Step 4: stock
    low_stock: list[StockAdjustment] = []
    for line in lines:
        try:
            with db.session.begin_nested():
                adjustment = adjust_for_sale(req.store_id, line.product_id, line.quantity)
            if adjustment.low_stock:
                low_stock.append(adjustment)
        except InsufficientStockError as exc:
            db.session.rollback()
            raise InsufficientStock(str(exc), details=exc.details) from exc
        except (InventoryError, SQLAlchemyError) as exc:
            _degrade(warnings, WARNING_STOCK, "Stock was not updated", exc, {"product_id": line.product_id})

    # Step 6: loyalty
    points_earned = 0
    if customer is not None:
        try:
            with db.session.begin_nested():
                accrual = apply_sale_loyalty(
                    customer,
                    settings=settings,
                    total_amount=charged["total_amount"],
                    sale_id=sale.id,
                    transaction_id=transaction_id,
                    employee_id=req.employee_id,
                    balance=balance,
                )
            points_earned = accrual.points_earned
            balance = accrual.balance
            sale.points_earned = points_earned
        except SQLAlchemyError as exc:
            _degrade(warnings, WARNING_LOYALTY, "Loyalty points were not updated", exc, {"customer_id": customer.id})

    # In-app order notification
    try:
        with db.session.begin_nested():
            create_notification(
                store_id=req.store_id,
                type=NOTIFICATION_ORDER,
                title=f"New Order #{transaction_id}",
                message=f"{(customer.name if customer else None) or 'A customer'} placed a new order for "
                        f"{current_app.config.get('CURRENCY', '')} {money_str(charged['total_amount'])}.",
                metadata={
                    "sale_id": sale.id,
                    "transaction_id": transaction_id,
                    "amount": money_str(charged["total_amount"]),
                    "customer": (customer.name if customer else None) or "Guest",
                },
            )
    except SQLAlchemyError as exc:
        _degrade(warnings, WARNING_NOTIFICATION, "Order notification was not recorded", exc)

    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        winner = find_sale_by_idempotency_key(req.store_id, req.idempotency_key)
        if winner is not None:
            return _replay(winner)
        raise SaleWriteFailed("Sale could not be recorded", details={"reason": str(exc.orig)}) from exc

    return SettlementResult(
        sale=sale,
        transaction_id=transaction_id,
        totals=breakdown,
        warnings=warnings,
        points_earned=points_earned,
        points_redeemed=points_redeemed,
        points_balance=balance,
        is_new_customer=resolution.is_new_customer,
        low_stock=low_stock,
    )


def _dispatch_notifications(req: SettlementRequest, result: SettlementResult) -> list[str]:
    """
    Send welcome, receipt and low-stock messages for a committed sale.

    Every database read happens first; the read transaction is then ended so
    no lock is held while messages are in flight.
    """
    from .sales_service import count_sales_today

    failures: list[str] = []
    messages: list[OutboundMessage] = []
    try:
        sale = result.sale
        customer = db.session.get(Customer, sale.customer_id) if sale.customer_id else None
        payload = NotificationPayload(
            store_id=sale.store_id,
            transaction_id=result.transaction_id,
            amount=Decimal(sale.total_amount),
            item_count=len(sale.items),
            customer_name=customer.name if customer else req.customer_name,
            customer_phone=customer.phone if customer else None,
            points_earned=result.points_earned,
            total_points=result.points_balance or 0,
            staff_name=req.staff_name,
            orders_today=count_sales_today(sale.store_id),
        )

        if result.is_new_customer:
            messages += plan_notification(KIND_WELCOME, payload)
        messages += plan_notification(KIND_SALE, payload)

        names = {item.product_id: item.product.name for item in sale.items if item.product is not None}
        for adjustment in result.low_stock:
            messages += plan_notification(KIND_LOW_STOCK, NotificationPayload(
                store_id=sale.store_id,
                product_name=names.get(adjustment.product_id, f"Product {adjustment.product_id}"),
                stock=adjustment.new_stock,
            ))
    except Exception as exc:
        current_app.logger.exception("Notification planning failed for %s", result.transaction_id)
        failures.append(f"dispatch:error:{exc}")
    finally:
        end_read_transaction()

    return failures + deliver_messages(messages)


def settle_sale(req: SettlementRequest) -> SettlementResult:
    """
    Settle a confirmed cart. See module docstring for the step contract.

    Raises ValidationError, RedemptionRejected, InsufficientStock or
    SaleWriteFailed; in each case nothing was committed and the caller keeps
    the cart for retry.
    """
    payment_method = _normalize_payment_method(req.payment_method)
    req.idempotency_key = optional_str(req.idempotency_key, "idempotency_key", max_length=128)

    def _op():
        return _settle_in_transaction(req, payment_method)

    try:
        result = run_with_retry(_op)
    except (ValidationError, RedemptionRejected):
        db.session.rollback()
        raise
    except SettlementError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Settlement failed for store %s", req.store_id)
        raise SaleWriteFailed("Sale could not be recorded", details={"reason": str(exc)}) from exc

    if result.replayed:
        end_read_transaction()
        current_app.logger.info("Replayed settlement %s for idempotency key %s", result.transaction_id, req.idempotency_key)
        return result

    sale_id, total_amount = result.sale.id, result.sale.total_amount

    try:
        failures = _dispatch_notifications(req, result)
    except Exception as exc:
        current_app.logger.exception("Notification dispatch failed for %s", result.transaction_id)
        failures = [f"dispatch:error:{exc}"]

    if failures:
        result.warnings.append(SettlementWarning(
            code=WARNING_NOTIFICATION,
            message="Some customer/owner messages were not sent",
            details={"failed": failures},
        ))

    current_app.logger.info(
        "Settled %s (sale %s) for store %s: total=%s warnings=%s",
        result.transaction_id, sale_id, req.store_id,
        money_str(total_amount), [w.code for w in result.warnings],
    )
    return result
