# storefront/core.py
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import Cart, Order, Product, User, UserRole

# Request/response shapes shared by the services and the HTTP layer.

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity resolved from a verified access token, passed explicitly to services."""
    user_id: int
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# ---------------------------
# Identity
# ---------------------------
class RegisterIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6, max_length=72)
    first_name: str = ""
    last_name: str = ""
    phone: str = ""

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("invalid email address")
        return v

    @field_validator("password")
    @classmethod
    def _bcrypt_limit(cls, v: str) -> str:
        if len(v.encode("utf-8")) > 72:
            raise ValueError("password must be at most 72 bytes")
        return v


class LoginIn(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        return v.strip().lower()


class RefreshTokenIn(BaseModel):
    refresh_token: str


class UpdateProfileIn(BaseModel):
    first_name: str = ""
    last_name: str = ""
    phone: str = ""


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: str
    last_name: str
    phone: str
    role: UserRole
    is_active: bool
    created_at: datetime
    updated_at: datetime


class AuthOut(BaseModel):
    user: UserOut
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


# ---------------------------
# Catalog
# ---------------------------
class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""


class CategoryUpdateIn(CategoryIn):
    is_active: Optional[bool] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    is_active: bool


class ProductIn(BaseModel):
    category_id: int
    name: str = Field(..., min_length=1)
    description: str = ""
    price: Decimal = Field(..., gt=0)
    stock: int = Field(0, ge=0)
    sku: str = Field(..., min_length=1)


class ProductUpdateIn(ProductIn):
    is_active: Optional[bool] = None


class ProductImageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    alt_text: str
    is_primary: bool


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    name: str
    description: str
    price: Decimal
    stock: int
    sku: str
    is_active: bool
    category: Optional[CategoryOut] = None
    images: List[ProductImageOut] = []


# ---------------------------
# Cart
# ---------------------------
class AddToCartIn(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1)


class UpdateCartItemIn(BaseModel):
    quantity: int = Field(..., ge=1)


class CartItemOut(BaseModel):
    id: int
    product: ProductOut
    quantity: int
    subtotal: Decimal


class CartOut(BaseModel):
    id: int
    user_id: int
    items: List[CartItemOut]
    total: Decimal


# ---------------------------
# Orders
# ---------------------------
class OrderItemOut(BaseModel):
    id: int
    product: ProductOut
    product_name: str
    quantity: int
    price: Decimal
    line_total: Decimal


class OrderOut(BaseModel):
    id: int
    user_id: int
    status: str
    total_amount: Decimal
    items: List[OrderItemOut]
    created_at: datetime
    updated_at: datetime


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class OrderPage(BaseModel):
    data: List[OrderOut]
    meta: PaginationMeta


class ProductPage(BaseModel):
    data: List[ProductOut]
    meta: PaginationMeta


# ---------------------------
# Helpers
# ---------------------------
def clamp_page(page: int, limit: int, max_limit: Optional[int] = 100) -> Tuple[int, int, int]:
    """Normalise page/limit and return (page, limit, offset)."""
    if page < 1:
        page = 1
    if limit < 1:
        limit = 10
    if max_limit is not None and limit > max_limit:
        limit = max_limit
    return page, limit, (page - 1) * limit


def make_meta(page: int, limit: int, total: int) -> PaginationMeta:
    return PaginationMeta(page=page, limit=limit, total=total, total_pages=(total + limit - 1) // limit)


def _make_user(user: User) -> UserOut:
    return UserOut.model_validate(user)


def _make_product(product: Product) -> ProductOut:
    return ProductOut.model_validate(product)


def _make_cart(cart: Cart) -> CartOut:
    items = []
    total = Decimal("0")
    for item in cart.items:
        subtotal = to_money(item.product.price * item.quantity)
        total += subtotal
        items.append(CartItemOut(
            id=item.id,
            product=_make_product(item.product),
            quantity=item.quantity,
            subtotal=subtotal,
        ))
    return CartOut(id=cart.id, user_id=cart.user_id, items=items, total=to_money(total))


def _make_order(order: Order) -> OrderOut:
    return OrderOut(
        id=order.id,
        user_id=order.user_id,
        status=order.status.value,
        total_amount=to_money(order.total_amount),
        items=[
            OrderItemOut(
                id=item.id,
                product=_make_product(item.product),
                product_name=item.product_name,
                quantity=item.quantity,
                price=to_money(item.unit_price),
                line_total=to_money(item.line_total),
            )
            for item in order.items
        ],
        created_at=order.created_at,
        updated_at=order.updated_at,
    )
