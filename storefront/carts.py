# storefront/carts.py
from typing import Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, selectinload

from .core import CartOut, _make_cart
from .database import Database
from .errors import InsufficientStock, InvalidQuantity, NotFound
from .inventory import InventoryLedger
from .models import Cart, CartItem, Product

logger = structlog.get_logger(__name__)


class CartStore:
    """Persistence for carts and their line items. Every method runs inside
    the session it is given and never commits on its own."""

    def get_by_user(self, session: Session, user_id: int) -> Cart:
        stmt = (
            select(Cart)
            .where(Cart.user_id == user_id)
            .options(
                selectinload(Cart.items).selectinload(CartItem.product).selectinload(Product.category),
                selectinload(Cart.items).selectinload(CartItem.product).selectinload(Product.images),
            )
            .execution_options(populate_existing=True)
        )
        cart = session.scalars(stmt).one_or_none()
        if cart is None:
            raise NotFound("cart not found")
        return cart

    def create(self, session: Session, user_id: int) -> Cart:
        cart = Cart(user_id=user_id)
        session.add(cart)
        session.flush()
        return cart

    def get_or_create(self, session: Session, user_id: int) -> Cart:
        try:
            return self.get_by_user(session, user_id)
        except NotFound:
            logger.info("Creating cart", user_id=user_id)
            return self.create(session, user_id)

    def get_item(self, session: Session, cart_id: int, product_id: int) -> Optional[CartItem]:
        return session.scalars(
            select(CartItem).where(CartItem.cart_id == cart_id, CartItem.product_id == product_id)
        ).one_or_none()

    def get_item_for_user(self, session: Session, item_id: int, user_id: int) -> CartItem:
        item = session.scalars(
            select(CartItem)
            .join(Cart, CartItem.cart_id == Cart.id)
            .where(CartItem.id == item_id, Cart.user_id == user_id)
        ).one_or_none()
        if item is None:
            raise NotFound("cart item not found")
        return item

    def upsert_item(self, session: Session, cart_id: int, product_id: int, quantity_delta: int) -> None:
        # one row per (cart, product); adding again grows the existing line
        result = session.execute(
            update(CartItem)
            .where(CartItem.cart_id == cart_id, CartItem.product_id == product_id)
            .values(quantity=CartItem.quantity + quantity_delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.add(CartItem(cart_id=cart_id, product_id=product_id, quantity=quantity_delta))
        session.flush()

    def set_item_quantity(self, session: Session, item_id: int, quantity: int) -> None:
        if quantity < 1:
            raise InvalidQuantity()
        result = session.execute(
            update(CartItem)
            .where(CartItem.id == item_id)
            .values(quantity=quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound("cart item not found")

    def remove_item(self, session: Session, user_id: int, item_id: int) -> None:
        owned_carts = select(Cart.id).where(Cart.user_id == user_id)
        result = session.execute(
            delete(CartItem)
            .where(CartItem.id == item_id, CartItem.cart_id.in_(owned_carts))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound("cart item not found")

    def clear_items(self, session: Session, cart_id: int, item_ids) -> int:
        result = session.execute(
            delete(CartItem)
            .where(CartItem.cart_id == cart_id, CartItem.id.in_(list(item_ids)))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class CartService:
    """Cart operations for an authenticated user.

    Stock is re-read at mutation time; a refused mutation leaves the cart as
    it was. Cart edits and order placement for the same user are not locked
    against each other here, callers serialize them.
    """

    def __init__(self, db: Database, ledger: InventoryLedger, store: Optional[CartStore] = None):
        self.db = db
        self.ledger = ledger
        self.store = store or CartStore()

    def get_cart(self, user_id: int) -> CartOut:
        with self.db.transaction() as session:
            return _make_cart(self.store.get_by_user(session, user_id))

    def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> CartOut:
        if quantity < 1:
            raise InvalidQuantity()
        with self.db.transaction() as session:
            product = session.get(Product, product_id)
            if product is None or not product.is_active:
                raise NotFound("product not found")

            cart = self.store.get_or_create(session, user_id)
            existing = self.store.get_item(session, cart.id, product_id)
            wanted = quantity + (existing.quantity if existing else 0)
            if self.ledger.available(session, product_id) < wanted:
                logger.warning("Add to cart refused", user_id=user_id, product_id=product_id, wanted=wanted)
                raise InsufficientStock(product.name)

            self.store.upsert_item(session, cart.id, product_id, quantity)
            logger.info("Item added to cart", user_id=user_id, product_id=product_id, quantity=quantity)
            return _make_cart(self.store.get_by_user(session, user_id))

    def update_cart_item(self, user_id: int, item_id: int, quantity: int) -> CartOut:
        if quantity < 1:
            raise InvalidQuantity()
        with self.db.transaction() as session:
            item = self.store.get_item_for_user(session, item_id, user_id)
            product = session.get(Product, item.product_id)
            if product is None:
                raise NotFound("product not found")
            if self.ledger.available(session, product.id) < quantity:
                raise InsufficientStock(product.name)

            self.store.set_item_quantity(session, item.id, quantity)
            return _make_cart(self.store.get_by_user(session, user_id))

    def remove_from_cart(self, user_id: int, item_id: int) -> CartOut:
        with self.db.transaction() as session:
            self.store.remove_item(session, user_id, item_id)
            logger.info("Item removed from cart", user_id=user_id, item_id=item_id)
            return _make_cart(self.store.get_by_user(session, user_id))
