# storefront/catalog.py
import uuid
from decimal import Decimal
from pathlib import PurePath
from typing import List, Optional

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from .core import (
    CategoryIn, CategoryOut, CategoryUpdateIn, ProductIn, ProductOut, ProductPage,
    ProductUpdateIn, _make_product, clamp_page, make_meta,
)
from .database import Database
from .errors import Conflict, NotFound, StorageError, StoreError
from .models import Category, Product, ProductImage
from .storage import StorageBackend

logger = structlog.get_logger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


def _like_pattern(query: str) -> str:
    escaped = query.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class CatalogService:
    """Categories and products. Stock here is a plain catalog edit; reservations
    go through the inventory ledger."""

    def __init__(self, db: Database, storage: StorageBackend, max_upload_size: int = 10 * 1024 * 1024):
        self.db = db
        self.storage = storage
        self.max_upload_size = max_upload_size

    # Categories
    def create_category(self, req: CategoryIn) -> CategoryOut:
        try:
            with self.db.transaction() as session:
                category = Category(name=req.name, description=req.description)
                session.add(category)
                session.flush()
                return CategoryOut.model_validate(category)
        except IntegrityError as exc:
            raise Conflict("category already exists") from exc

    def list_categories(self) -> List[CategoryOut]:
        with self.db.transaction() as session:
            rows = session.scalars(select(Category).where(Category.is_active.is_(True)).order_by(Category.id))
            return [CategoryOut.model_validate(c) for c in rows]

    def update_category(self, category_id: int, req: CategoryUpdateIn) -> CategoryOut:
        with self.db.transaction() as session:
            category = self._category(session, category_id)
            category.name = req.name
            category.description = req.description
            if req.is_active is not None:
                category.is_active = req.is_active
            session.flush()
            return CategoryOut.model_validate(category)

    def delete_category(self, category_id: int) -> None:
        try:
            with self.db.transaction() as session:
                session.delete(self._category(session, category_id))
        except IntegrityError as exc:
            raise Conflict("category still has products") from exc

    # Products
    def create_product(self, req: ProductIn) -> ProductOut:
        try:
            with self.db.transaction() as session:
                self._category(session, req.category_id)
                product = Product(
                    category_id=req.category_id,
                    name=req.name,
                    description=req.description,
                    price=req.price,
                    stock=req.stock,
                    sku=req.sku,
                )
                session.add(product)
                session.flush()
                logger.info("Product created", product_id=product.id, sku=product.sku)
                return _make_product(self._product(session, product.id))
        except IntegrityError as exc:
            raise Conflict("sku already exists") from exc

    def get_product(self, product_id: int) -> ProductOut:
        with self.db.transaction() as session:
            return _make_product(self._product(session, product_id))

    def list_products(self, page: int = 1, limit: int = 10) -> ProductPage:
        page, limit, offset = clamp_page(page, limit)
        with self.db.transaction() as session:
            active = Product.is_active.is_(True)
            total = session.scalar(select(func.count(Product.id)).where(active))
            rows = session.scalars(
                select(Product)
                .where(active)
                .options(selectinload(Product.category), selectinload(Product.images))
                .order_by(Product.id)
                .offset(offset)
                .limit(limit)
            ).all()
            return ProductPage(data=[_make_product(p) for p in rows], meta=make_meta(page, limit, total or 0))

    def search_products(self, query: str, category_id: Optional[int] = None,
                        min_price: Optional[Decimal] = None, max_price: Optional[Decimal] = None,
                        page: int = 1, limit: int = 10) -> ProductPage:
        page, limit, offset = clamp_page(page, limit)
        pattern = _like_pattern(query)
        conditions = [
            Product.is_active.is_(True),
            or_(
                func.lower(Product.name).like(pattern, escape="\\"),
                func.lower(Product.description).like(pattern, escape="\\"),
            ),
        ]
        if category_id is not None:
            conditions.append(Product.category_id == category_id)
        if min_price is not None:
            conditions.append(Product.price >= min_price)
        if max_price is not None:
            conditions.append(Product.price <= max_price)

        with self.db.transaction() as session:
            total = session.scalar(select(func.count(Product.id)).where(*conditions))
            rows = session.scalars(
                select(Product)
                .where(*conditions)
                .options(selectinload(Product.category), selectinload(Product.images))
                .order_by(Product.created_at.desc(), Product.id.desc())
                .offset(offset)
                .limit(limit)
            ).all()
            return ProductPage(data=[_make_product(p) for p in rows], meta=make_meta(page, limit, total or 0))

    def update_product(self, product_id: int, req: ProductUpdateIn) -> ProductOut:
        with self.db.transaction() as session:
            product = self._product(session, product_id)
            self._category(session, req.category_id)
            product.category_id = req.category_id
            product.name = req.name
            product.description = req.description
            product.price = req.price
            product.stock = req.stock
            product.sku = req.sku
            if req.is_active is not None:
                product.is_active = req.is_active
            session.flush()
            return _make_product(self._product(session, product_id))

    def delete_product(self, product_id: int) -> None:
        try:
            with self.db.transaction() as session:
                session.delete(self._product(session, product_id))
        except IntegrityError as exc:
            raise Conflict("product is referenced by carts or orders") from exc

    def add_product_image(self, product_id: int, filename: str, content: bytes, alt_text: str = "") -> ProductOut:
        ext = PurePath(filename).suffix.lower()
        if ext not in IMAGE_EXTENSIONS:
            raise StoreError(f"invalid file type: {ext or filename}")
        if len(content) > self.max_upload_size:
            raise StoreError("file too large")

        url = None
        try:
            with self.db.transaction() as session:
                self._product(session, product_id)
                url = self.storage.upload_file(content, f"products/{product_id}/{uuid.uuid4()}{ext}")
                count = session.scalar(select(func.count(ProductImage.id)).where(ProductImage.product_id == product_id))
                session.add(ProductImage(product_id=product_id, url=url, alt_text=alt_text, is_primary=count == 0))
                session.flush()
                return _make_product(self._product(session, product_id))
        except Exception:
            if url is not None:
                self._discard_upload(product_id, url)
            raise

    def _discard_upload(self, product_id: int, url: str) -> None:
        # The row never committed, so the stored file has no owner.
        logger.warning("Image upload rolled back", product_id=product_id, url=url)
        try:
            self.storage.delete_file(url)
        except StorageError:
            logger.exception("Orphaned image cleanup failed", product_id=product_id, url=url)

    def _category(self, session: Session, category_id: int) -> Category:
        category = session.get(Category, category_id)
        if category is None:
            raise NotFound("category not found")
        return category

    def _product(self, session: Session, product_id: int) -> Product:
        product = session.scalars(
            select(Product)
            .where(Product.id == product_id)
            .options(selectinload(Product.category), selectinload(Product.images))
            .execution_options(populate_existing=True)
        ).one_or_none()
        if product is None:
            raise NotFound("product not found")
        return product
