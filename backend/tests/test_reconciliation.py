from decimal import Decimal

from conftest import CASHIER_TOKEN, auth_headers
from tillcore.models import Customer, LoyaltyLedgerEntry, Product, Sale, Store
from tillcore.services import reconciliation_service


def _orphan_sale(db_session, store, transaction_id="TRX-00099"):
    sale = Sale(
        store_id=store.id,
        transaction_id=transaction_id,
        subtotal=Decimal("10.00"),
        tax_amount=Decimal("0.00"),
        discount_amount=Decimal("0.00"),
        total_amount=Decimal("10.00"),
        payment_method="cash",
    )
    db_session.add(sale)
    db_session.commit()
    return sale


class TestBalanceDrift:
    def test_consistent_balances_report_nothing(self, db_session, store, make_customer):
        make_customer(points=120)
        make_customer(phone="0550000000", points=0)
        assert reconciliation_service.find_balance_drift(store.id) == []

    def test_detects_drift(self, db_session, store, make_customer):
        customer = make_customer(points=120)
        customer.points = 150
        db_session.commit()

        drift = reconciliation_service.find_balance_drift(store.id)

        assert len(drift) == 1
        assert drift[0].customer_id == customer.id
        assert drift[0].ledger_points == 120
        assert drift[0].delta == -30

    def test_customer_without_entries_counts_as_zero(self, db_session, store, make_customer):
        customer = make_customer(points=0)
        customer.points = 5
        db_session.commit()
        assert [d.ledger_points for d in reconciliation_service.find_balance_drift()] == [0]

    def test_fix_resets_cache_to_ledger(self, db_session, store, make_customer):
        customer = make_customer(points=120)
        db_session.add(LoyaltyLedgerEntry(
            store_id=store.id, customer_id=customer.id, points=-50, type="redeemed", description="Manual",
        ))
        db_session.commit()

        drift = reconciliation_service.reconcile_customer_balances(store.id, fix=True)

        assert [d.delta for d in drift] == [-50]
        assert db_session.get(Customer, customer.id).points == 70
        assert db_session.query(LoyaltyLedgerEntry).count() == 2
        assert reconciliation_service.find_balance_drift(store.id) == []

    def test_report_only_does_not_write(self, db_session, store, make_customer):
        customer = make_customer(points=120)
        customer.points = 10
        db_session.commit()

        reconciliation_service.reconcile_customer_balances(store.id)

        assert db_session.get(Customer, customer.id).points == 10

    def test_store_filter(self, db_session, store, other_store, make_customer):
        customer = make_customer(points=0, store_id=other_store.id)
        customer.points = 3
        db_session.commit()
        assert reconciliation_service.find_balance_drift(store.id) == []
        assert len(reconciliation_service.find_balance_drift(other_store.id)) == 1


class TestOrphanSales:
    def test_sale_without_items_is_reported(self, db_session, sender, store, product):
        orphan = _orphan_sale(db_session, store)
        assert [s.id for s in reconciliation_service.find_orphan_sales(store.id)] == [orphan.id]

    def test_settled_sale_is_not_orphan(self, client, db_session, sender, store, product):
        client.post(
            "/api/sales/checkout",
            json={"items": [{"product_id": product.id, "quantity": 1}], "payment_method": "cash"},
            headers=auth_headers(CASHIER_TOKEN),
        )
        assert reconciliation_service.find_orphan_sales(store.id) == []


class TestCommands:
    def test_reconcile_command(self, app, db_session, store, make_customer):
        customer = make_customer(points=40)
        customer.points = 45
        db_session.commit()

        runner = app.test_cli_runner()
        report = runner.invoke(args=["loyalty", "reconcile", "--store-id", str(store.id)])
        assert "DRIFT" in report.output
        assert "delta=-5" in report.output

        fixed = runner.invoke(args=["loyalty", "reconcile", "--fix"])
        assert "FIXED" in fixed.output
        db_session.expire_all()
        assert db_session.get(Customer, customer.id).points == 40

    def test_orphans_command(self, app, db_session, store):
        _orphan_sale(db_session, store)
        result = app.test_cli_runner().invoke(args=["sales", "orphans"])
        assert "ORPHAN" in result.output
        assert "TRX-00099" in result.output

    def test_store_and_product_commands(self, app, db_session):
        runner = app.test_cli_runner()
        created = runner.invoke(args=["stores", "create", "--name", "Kiosk", "--code", "KSK", "--prefix", "KSK"])
        assert created.exit_code == 0, created.output

        store = db_session.query(Store).filter_by(code="KSK").one()
        assert store.receipt_prefix == "KSK"

        added = runner.invoke(args=[
            "products", "add", "--store-id", str(store.id), "--sku", "W-1", "--name", "Water", "--price", "2.50",
            "--stock", "24",
        ])
        assert added.exit_code == 0, added.output
        assert db_session.query(Product).filter_by(store_id=store.id, sku="W-1").one().stock == 24

        duplicate = runner.invoke(args=[
            "products", "add", "--store-id", str(store.id), "--sku", "W-1", "--name", "Water", "--price", "2.50",
        ])
        assert duplicate.exit_code != 0
        assert "already exists" in duplicate.output

    def test_duplicate_store_code_is_rejected(self, app, db_session, store):
        result = app.test_cli_runner().invoke(args=["stores", "create", "--name", "Again", "--code", store.code])
        assert result.exit_code != 0
        assert "already exists" in result.output
