# tests/test_inventory.py
import pytest

from storefront.errors import InsufficientStock, InvalidQuantity, NotFound
from storefront.inventory import InventoryLedger

ledger = InventoryLedger()


def test_reserve_decrements_stock(services, make_product, stock_of):
    p = make_product(stock=5)
    with services.db.transaction() as session:
        ledger.try_reserve(session, p.id, 3)
    assert stock_of(p.id) == 2


def test_reserve_exact_stock_reaches_zero(services, make_product, stock_of):
    p = make_product(stock=2)
    with services.db.transaction() as session:
        ledger.try_reserve(session, p.id, 2)
    assert stock_of(p.id) == 0


def test_reserve_more_than_stock_names_product(services, make_product, stock_of):
    p = make_product(name="Lamp", stock=1)
    with pytest.raises(InsufficientStock) as exc:
        with services.db.transaction() as session:
            ledger.try_reserve(session, p.id, 2)
    assert exc.value.product_name == "Lamp"
    assert "Lamp" in exc.value.message
    assert stock_of(p.id) == 1


def test_failed_reservation_rolls_back_earlier_ones(services, make_product, stock_of):
    a = make_product(name="A", stock=5)
    b = make_product(name="B", stock=1)
    with pytest.raises(InsufficientStock):
        with services.db.transaction() as session:
            ledger.try_reserve(session, a.id, 2)
            ledger.try_reserve(session, b.id, 3)
    assert stock_of(a.id) == 5
    assert stock_of(b.id) == 1


def test_reserve_unknown_product(services):
    with pytest.raises(NotFound):
        with services.db.transaction() as session:
            ledger.try_reserve(session, 9999, 1)


@pytest.mark.parametrize("qty", [0, -1])
def test_reserve_rejects_non_positive_quantity(services, make_product, qty):
    p = make_product()
    with pytest.raises(InvalidQuantity):
        with services.db.transaction() as session:
            ledger.try_reserve(session, p.id, qty)


def test_release_adds_stock_back(services, make_product, stock_of):
    p = make_product(stock=1)
    with services.db.transaction() as session:
        ledger.try_reserve(session, p.id, 1)
        ledger.release(session, p.id, 4)
    assert stock_of(p.id) == 4


def test_release_unknown_product(services):
    with pytest.raises(NotFound):
        with services.db.transaction() as session:
            ledger.release(session, 9999, 1)


def test_available_reads_live_stock(services, make_product):
    p = make_product(stock=7)
    with services.db.transaction() as session:
        assert ledger.available(session, p.id) == 7
        ledger.try_reserve(session, p.id, 3)
        assert ledger.available(session, p.id) == 4
