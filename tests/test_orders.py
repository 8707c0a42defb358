# tests/test_orders.py
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from storefront.carts import CartStore
from storefront.core import ProductUpdateIn
from storefront.errors import EmptyCart, InsufficientStock, NotFound
from storefront.inventory import InventoryLedger
from storefront.models import CartItem
from storefront.orders import OrderEngine


def _update(services, category, product, **changes):
    fields = dict(category_id=category.id, name=product.name, price=product.price,
                  stock=product.stock, sku=product.sku)
    fields.update(changes)
    return services.catalog.update_product(product.id, ProductUpdateIn(**fields))


def test_place_order_happy_path(services, register, make_product, stock_of):
    user = register().user
    p = make_product(name="Mug", price="10.00", stock=5)
    services.carts.add_to_cart(user.id, p.id, 2)

    order = services.orders.place_order(user.id)

    assert order.total_amount == Decimal("20.00")
    assert order.status == "pending"
    assert order.user_id == user.id
    assert len(order.items) == 1
    assert order.items[0].product_name == "Mug"
    assert order.items[0].quantity == 2
    assert order.items[0].price == Decimal("10.00")
    assert order.items[0].product.stock == 3
    assert stock_of(p.id) == 3
    assert services.carts.get_cart(user.id).items == []


def test_total_sums_lines_in_cents(services, register, make_product):
    user = register().user
    a = make_product(price="19.99", stock=10)
    b = make_product(price="0.35", stock=10)
    services.carts.add_to_cart(user.id, a.id, 3)
    services.carts.add_to_cart(user.id, b.id, 7)
    order = services.orders.place_order(user.id)
    assert order.total_amount == Decimal("62.42")
    assert [i.line_total for i in order.items] == [Decimal("59.97"), Decimal("2.45")]


def test_failed_order_changes_nothing(services, register, make_product, category, stock_of):
    user = register().user
    a = make_product(name="A", stock=5)
    b = make_product(name="B", stock=3)
    services.carts.add_to_cart(user.id, a.id, 2)
    services.carts.add_to_cart(user.id, b.id, 3)
    # stock drops after the item went into the cart
    _update(services, category, b, stock=1)
    before = services.carts.get_cart(user.id)

    with pytest.raises(InsufficientStock) as exc:
        services.orders.place_order(user.id)

    assert exc.value.product_name == "B"
    assert stock_of(a.id) == 5
    assert stock_of(b.id) == 1
    assert services.carts.get_cart(user.id) == before
    assert services.orders.get_orders(user.id).meta.total == 0


def test_first_failing_line_is_reported(services, register, make_product, category):
    user = register().user
    a = make_product(name="First", stock=5)
    b = make_product(name="Second", stock=5)
    services.carts.add_to_cart(user.id, a.id, 4)
    services.carts.add_to_cart(user.id, b.id, 4)
    _update(services, category, a, stock=1)
    _update(services, category, b, stock=1)
    with pytest.raises(InsufficientStock) as exc:
        services.orders.place_order(user.id)
    assert exc.value.product_name == "First"


def test_empty_cart(services, register):
    user = register().user
    with pytest.raises(EmptyCart):
        services.orders.place_order(user.id)


def test_no_cart_is_not_found(services):
    with pytest.raises(NotFound):
        services.orders.place_order(31337)


def test_order_keeps_price_and_name_snapshot(services, register, make_product, category):
    user = register().user
    p = make_product(name="Chair", price="10.00", stock=5)
    services.carts.add_to_cart(user.id, p.id, 2)
    placed = services.orders.place_order(user.id)

    _update(services, category, p, name="Deluxe Chair", price=Decimal("99.00"), stock=3)

    order = services.orders.get_order(user.id, placed.id)
    assert order.total_amount == Decimal("20.00")
    assert order.items[0].price == Decimal("10.00")
    assert order.items[0].product_name == "Chair"
    assert order.items[0].product.price == Decimal("99.00")


def test_concurrent_orders_for_last_units(services, register, make_product, stock_of):
    p = make_product(stock=5)
    users = [register().user for _ in range(2)]
    for u in users:
        services.carts.add_to_cart(u.id, p.id, 3)

    def place(user_id):
        try:
            return services.orders.place_order(user_id)
        except InsufficientStock as exc:
            return exc

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(place, [u.id for u in users]))

    placed = [r for r in results if not isinstance(r, Exception)]
    refused = [r for r in results if isinstance(r, InsufficientStock)]
    assert len(placed) == 1
    assert len(refused) == 1
    assert stock_of(p.id) == 2

    # the loser keeps their cart
    loser = next(u for u, r in zip(users, results) if isinstance(r, InsufficientStock))
    assert services.carts.get_cart(loser.id).items[0].quantity == 3


def test_many_buyers_never_oversell(services, register, make_product, stock_of):
    p = make_product(stock=3)
    users = [register().user for _ in range(6)]
    for u in users:
        services.carts.add_to_cart(u.id, p.id, 1)

    def place(user_id):
        try:
            services.orders.place_order(user_id)
            return True
        except InsufficientStock:
            return False

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(place, [u.id for u in users]))

    assert outcomes.count(True) == 3
    assert stock_of(p.id) == 0


class LateLineCartStore(CartStore):
    """Puts an extra line into the cart after the order has read it."""

    def __init__(self, late_product_id):
        self.late_product_id = late_product_id

    def clear_items(self, session, cart_id, item_ids):
        session.add(CartItem(cart_id=cart_id, product_id=self.late_product_id, quantity=1))
        session.flush()
        return super().clear_items(session, cart_id, item_ids)


def test_order_clears_only_the_lines_it_consumed(services, register, make_product, stock_of):
    user = register().user
    ordered = make_product(name="Ordered", stock=5)
    late = make_product(name="Late", stock=5)
    services.carts.add_to_cart(user.id, ordered.id, 1)

    engine = OrderEngine(services.db, InventoryLedger(), carts=LateLineCartStore(late.id))
    order = engine.place_order(user.id)

    assert [i.product_name for i in order.items] == ["Ordered"]
    cart = services.carts.get_cart(user.id)
    assert [i.product.id for i in cart.items] == [late.id]
    assert stock_of(late.id) == 5


def test_orders_are_listed_newest_first(services, register, make_product):
    user = register().user
    p = make_product(stock=10)
    ids = []
    for _ in range(3):
        services.carts.add_to_cart(user.id, p.id, 1)
        ids.append(services.orders.place_order(user.id).id)

    first = services.orders.get_orders(user.id, page=1, limit=2)
    assert [o.id for o in first.data] == ids[::-1][:2]
    assert first.meta.total == 3
    assert first.meta.total_pages == 2

    second = services.orders.get_orders(user.id, page=2, limit=2)
    assert [o.id for o in second.data] == [ids[0]]


@pytest.mark.parametrize("page,limit,expected", [
    (0, 5, (1, 5)),
    (-3, 0, (1, 10)),
    (2, 500, (2, 100)),
])
def test_pagination_is_clamped(services, register, page, limit, expected):
    user = register().user
    meta = services.orders.get_orders(user.id, page=page, limit=limit).meta
    assert (meta.page, meta.limit) == expected
    assert meta.total == 0


def test_other_users_order_is_not_found(services, register, make_product):
    alice = register().user
    bob = register().user
    services.carts.add_to_cart(alice.id, make_product().id, 1)
    order = services.orders.place_order(alice.id)

    assert services.orders.get_order(alice.id, order.id).id == order.id
    with pytest.raises(NotFound):
        services.orders.get_order(bob.id, order.id)
    assert services.orders.get_orders(bob.id).data == []
