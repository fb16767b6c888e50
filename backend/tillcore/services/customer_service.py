# Overview: Customer directory: lookup, find-or-create by (store_id, phone), search, add and rename.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer
from ..validation import ConflictError, ValidationError, normalize_phone, optional_str
from .concurrency import run_with_retry


@dataclass
class CustomerResolution:
    customer: Customer | None
    is_new_customer: bool


def find_customer_by_phone(store_id: int, phone: str | None) -> Customer | None:
    phone = normalize_phone(phone)
    if not phone:
        return None
    return db.session.query(Customer).filter_by(store_id=store_id, phone=phone).first()


def get_customer(store_id: int, customer_id: int) -> Customer | None:
    return db.session.query(Customer).filter_by(id=customer_id, store_id=store_id).first()


def resolve_customer(store_id: int, phone: str | None, name: str | None = None) -> CustomerResolution:
    """
    Find the customer by phone, creating one with zero points/spend if absent.

    is_new_customer is decided here, before any point mutation, and gates the
    welcome message later in settlement. No phone means guest checkout.

    Does not commit. Creation runs in a SAVEPOINT so a concurrent insert of the
    same phone (unique per store) falls back to the winner's row.
    """
    phone = normalize_phone(phone)
    if not phone:
        return CustomerResolution(customer=None, is_new_customer=False)

    existing = db.session.query(Customer).filter_by(store_id=store_id, phone=phone).first()
    if existing:
        return CustomerResolution(customer=existing, is_new_customer=False)

    customer = Customer(
        store_id=store_id,
        phone=phone,
        name=(name or "").strip() or "Unknown",
        points=0,
        total_visits=0,
    )
    try:
        with db.session.begin_nested():
            db.session.add(customer)
    except IntegrityError:
        existing = db.session.query(Customer).filter_by(store_id=store_id, phone=phone).first()
        if existing is None:
            raise
        return CustomerResolution(customer=existing, is_new_customer=False)

    return CustomerResolution(customer=customer, is_new_customer=True)


def list_customers(
    store_id: int,
    *,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Customer], int]:
    """
    Store's customers, newest first. Returns (page, total count).

    `search` matches a case-insensitive substring of the name or a substring
    of the stored phone digits.
    """
    q = db.session.query(Customer).filter(Customer.store_id == store_id)
    term = (search or "").strip()
    if term:
        clauses = [Customer.name.ilike(f"%{term}%")]
        digits = "".join(ch for ch in term if ch.isdigit())
        if digits:
            clauses.append(Customer.phone.contains(digits))
        q = q.filter(or_(*clauses))

    total = q.count()
    customers = q.order_by(Customer.created_at.desc(), Customer.id.desc()).offset(offset).limit(limit).all()
    return customers, total


def _require_name(name) -> str:
    name = optional_str(name, "name")
    if not name:
        raise ValidationError("name is required")
    return name


def create_customer(store_id: int, phone, name) -> Customer:
    """Add a customer with zero points and spend. A phone already on file is a conflict."""
    phone = normalize_phone(phone)
    if not phone:
        raise ValidationError("phone is required")
    name = _require_name(name)

    def _op():
        if find_customer_by_phone(store_id, phone):
            raise ConflictError(f"A customer with phone {phone} already exists")
        customer = Customer(store_id=store_id, phone=phone, name=name, points=0, total_visits=0)
        db.session.add(customer)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(f"A customer with phone {phone} already exists")
        current_app.logger.info("Customer %s (%s) added to store %s", customer.id, phone, store_id)
        return customer

    try:
        return run_with_retry(_op)
    except ConflictError:
        db.session.rollback()
        raise


def rename_customer(store_id: int, customer_id: int, name) -> Customer | None:
    """Change a customer's display name. Returns None when the customer is not in this store."""
    name = _require_name(name)

    def _op():
        customer = get_customer(store_id, customer_id)
        if customer is None:
            return None
        customer.name = name
        db.session.commit()
        return customer

    return run_with_retry(_op)
