import pytest

from tillcore.extensions import db
from tillcore.services.sequence_service import (
    SequenceError,
    allocate_transaction_id,
    format_transaction_id,
    peek_next_transaction_id,
)


class TestFormat:
    def test_default_prefix_and_padding(self, app):
        assert format_transaction_id(42) == "TRX-00042"

    def test_custom_prefix_and_suffix(self, app):
        assert format_transaction_id(7, "SHOP", "A") == "SHOP-00007-A"

    def test_wide_numbers_are_not_truncated(self, app):
        assert format_transaction_id(123456, "TRX") == "TRX-123456"


class TestAllocate:
    def test_sequential_and_unique(self, db_session, store):
        ids = [allocate_transaction_id(store.id)[1] for _ in range(3)]
        db_session.commit()
        assert ids == ["TRX-00001", "TRX-00002", "TRX-00003"]
        db_session.refresh(store)
        assert store.last_transaction_number == 3

    def test_rollback_releases_nothing(self, db_session, store):
        allocate_transaction_id(store.id)
        db_session.rollback()
        assert allocate_transaction_id(store.id) == (1, "TRX-00001")
        db_session.commit()

    def test_counters_are_per_store(self, db_session, store, other_store):
        allocate_transaction_id(store.id)
        allocate_transaction_id(store.id)
        assert allocate_transaction_id(other_store.id)[0] == 1
        db_session.commit()

    def test_store_prefix_is_used(self, db_session, store):
        store.receipt_prefix = "MAIN"
        db_session.commit()
        assert allocate_transaction_id(store.id)[1] == "MAIN-00001"
        db_session.commit()

    def test_peek_does_not_allocate(self, db_session, store):
        assert peek_next_transaction_id(store.id) == "TRX-00001"
        assert peek_next_transaction_id(store.id) == "TRX-00001"

    def test_unknown_store(self, db_session):
        with pytest.raises(SequenceError):
            allocate_transaction_id(9999)
        db.session.rollback()
