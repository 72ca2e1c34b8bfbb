"""
SqlQuantityStore tests: locked reads and the conditional adjust.
"""

from uuid import uuid4

import pytest

from stock_kernel.exceptions import InsufficientStockError, ProductNotFoundError, ZeroStockError
from stock_kernel.services.quantity_store import SqlQuantityStore


class TestSqlQuantityStore:
    def test_reads(self, session_factory, create_product):
        product = create_product(quantity=12, minimum_stock=3)

        with session_factory() as session:
            store = SqlQuantityStore(session)
            assert store.read_quantity(product.id) == 12
            assert store.read_quantity_for_update(product.id) == 12
            assert store.read_minimum_stock(product.id) == 3

    def test_missing_product(self, session_factory):
        with session_factory() as session:
            store = SqlQuantityStore(session)
            with pytest.raises(ProductNotFoundError):
                store.read_quantity(uuid4())
            with pytest.raises(ProductNotFoundError):
                store.read_quantity_for_update(uuid4())

    def test_adjust_returns_new_quantity(self, session_factory, create_product, current_quantity):
        product = create_product(quantity=5)

        with session_factory() as session:
            store = SqlQuantityStore(session)
            assert store.atomic_adjust(product.id, 3) == 8
            assert store.atomic_adjust(product.id, -8) == 0
            session.commit()

        assert current_quantity(product.id) == 0

    def test_adjust_below_zero_updates_nothing(
        self, session_factory, create_product, current_quantity, captured_logs
    ):
        product = create_product(quantity=2)

        with session_factory() as session:
            store = SqlQuantityStore(session)
            with pytest.raises(InsufficientStockError) as exc_info:
                store.atomic_adjust(product.id, -3)
            session.rollback()

        assert exc_info.value.available == 2
        assert exc_info.value.requested == 3
        assert current_quantity(product.id) == 2
        assert any(r["message"] == "atomic_adjust_refused" for r in captured_logs())

    def test_adjust_on_empty_product_reports_zero_stock(
        self, session_factory, create_product, current_quantity
    ):
        product = create_product(quantity=0)

        with session_factory() as session:
            store = SqlQuantityStore(session)
            with pytest.raises(ZeroStockError) as exc_info:
                store.atomic_adjust(product.id, -1)
            session.rollback()

        assert exc_info.value.code == "ZERO_STOCK"
        assert current_quantity(product.id) == 0

    def test_no_minimum_stock(self, session_factory, create_product):
        product = create_product(quantity=1)

        with session_factory() as session:
            assert SqlQuantityStore(session).read_minimum_stock(product.id) is None
