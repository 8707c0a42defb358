# storefront/inventory.py
from typing import Iterable, List

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .errors import InsufficientStock, InvalidQuantity, NotFound
from .models import Product

logger = structlog.get_logger(__name__)


class InventoryLedger:
    """Per-product stock counter.

    Stock is never cached: every check reads the row inside the caller's
    transaction, and every decrement is a conditional UPDATE whose affected
    row count decides success. On PostgreSQL the rows can additionally be
    locked up front with ``lock_products``.
    """

    def __init__(self, row_locks: bool = False):
        self.row_locks = row_locks

    def available(self, session: Session, product_id: int) -> int:
        stock = session.execute(
            select(Product.stock).where(Product.id == product_id)
        ).scalar_one_or_none()
        if stock is None:
            raise NotFound("product not found")
        return stock

    def lock_products(self, session: Session, product_ids: Iterable[int]) -> List[Product]:
        # ascending id order so two orders never wait on each other's rows
        stmt = select(Product).where(Product.id.in_(sorted(set(product_ids)))).order_by(Product.id)
        if self.row_locks:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        return list(session.scalars(stmt))

    def try_reserve(self, session: Session, product_id: int, quantity: int) -> None:
        """Take ``quantity`` units out of stock or raise InsufficientStock.

        Nothing is written when the reservation fails; earlier reservations
        in the same transaction are undone by the caller's rollback.
        """
        if quantity < 1:
            raise InvalidQuantity()
        result = session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return
        name = session.execute(select(Product.name).where(Product.id == product_id)).scalar_one_or_none()
        if name is None:
            raise NotFound("product not found")
        logger.warning("Stock reservation refused", product_id=product_id, quantity=quantity)
        raise InsufficientStock(name)

    def release(self, session: Session, product_id: int, quantity: int) -> None:
        """Put units back, for compensating paths outside the order transaction."""
        if quantity < 1:
            raise InvalidQuantity()
        result = session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound("product not found")
        logger.info("Stock released", product_id=product_id, quantity=quantity)
