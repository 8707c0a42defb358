# storefront/orders.py
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from .carts import CartStore
from .core import OrderOut, OrderPage, _make_order, clamp_page, make_meta, to_money
from .database import Database
from .errors import EmptyCart, InsufficientStock, NotFound
from .inventory import InventoryLedger
from .models import Order, OrderItem, OrderStatus, Product

logger = structlog.get_logger(__name__)

_ORDER_DETAIL = (
    selectinload(Order.items).selectinload(OrderItem.product).selectinload(Product.category),
    selectinload(Order.items).selectinload(OrderItem.product).selectinload(Product.images),
)


class OrderEngine:
    """Turns a user's cart into an order as one all-or-nothing unit."""

    def __init__(self, db: Database, ledger: InventoryLedger, carts: Optional[CartStore] = None):
        self.db = db
        self.ledger = ledger
        self.carts = carts or CartStore()

    def place_order(self, user_id: int) -> OrderOut:
        """Load cart, check stock, reserve, write the order, empty the cart.

        Raises NotFound (no cart), EmptyCart or InsufficientStock naming the
        first line that cannot be served. Any failure rolls the whole unit
        back: no stock moves and the cart keeps its lines.
        """
        with self.db.transaction() as session:
            cart = self.carts.get_by_user(session, user_id)
            lines = sorted(cart.items, key=lambda line: line.id)
            if not lines:
                raise EmptyCart()

            products = {
                p.id: p for p in self.ledger.lock_products(session, [line.product_id for line in lines])
            }

            for line in lines:
                product = products[line.product_id]
                if product.stock < line.quantity:
                    logger.warning(
                        "Order refused, insufficient stock",
                        user_id=user_id,
                        product_id=product.id,
                        requested=line.quantity,
                        available=product.stock,
                    )
                    raise InsufficientStock(product.name)

            total = Decimal("0")
            order_items = []
            for line in lines:
                product = products[line.product_id]
                self.ledger.try_reserve(session, product.id, line.quantity)
                # price and name are frozen here; later catalog edits don't touch the order
                order_items.append(OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    unit_price=product.price,
                    quantity=line.quantity,
                ))
                total += to_money(product.price * line.quantity)

            order = Order(
                user_id=user_id,
                status=OrderStatus.pending,
                total_amount=to_money(total),
                items=order_items,
            )
            session.add(order)
            session.flush()

            # only the lines this order consumed
            self.carts.clear_items(session, cart.id, [line.id for line in lines])

            # stock moved through bulk UPDATEs; drop the stale in-session copies
            session.expire_all()
            placed = self._load(session, user_id, order.id)
            logger.info(
                "Order placed",
                order_id=placed.id,
                user_id=user_id,
                total=str(placed.total_amount),
                lines=len(order_items),
            )
            return _make_order(placed)

    def get_orders(self, user_id: int, page: int = 1, limit: int = 10) -> OrderPage:
        page, limit, offset = clamp_page(page, limit)
        with self.db.transaction() as session:
            total = session.scalar(select(func.count(Order.id)).where(Order.user_id == user_id))
            orders = session.scalars(
                select(Order)
                .where(Order.user_id == user_id)
                .options(*_ORDER_DETAIL)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .offset(offset)
                .limit(limit)
            ).all()
            return OrderPage(data=[_make_order(o) for o in orders], meta=make_meta(page, limit, total or 0))

    def get_order(self, user_id: int, order_id: int) -> OrderOut:
        with self.db.transaction() as session:
            return _make_order(self._load(session, user_id, order_id))

    def _load(self, session: Session, user_id: int, order_id: int) -> Order:
        order = session.scalars(
            select(Order)
            .where(Order.id == order_id, Order.user_id == user_id)
            .options(*_ORDER_DETAIL)
            .execution_options(populate_existing=True)
        ).one_or_none()
        if order is None:
            raise NotFound("order not found")
        return order
